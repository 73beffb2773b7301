from __future__ import annotations
from dataclasses import dataclass

@dataclass(frozen=True)
class Mcu:
    name: str
    code_size: int
    block_size: int

# Таблица HalfKay: размер кода под загрузчиком и размер блока записи.
MCUS = [
    Mcu("at90usb162", 15872, 128),
    Mcu("atmega32u4", 32256, 128),
    Mcu("at90usb646", 64512, 256),
    Mcu("at90usb1286", 130048, 256),
    Mcu("mkl26z64", 63488, 512),
    Mcu("mk20dx128", 131072, 1024),
    Mcu("mk20dx256", 262144, 1024),
    Mcu("mk66fx1m0", 1048576, 1024),
    Mcu("mk64fx512", 524288, 1024),
    Mcu("imxrt1062", 2031616, 1024),

    # имена плат как в boards.txt
    Mcu("TEENSY2", 32256, 128),
    Mcu("TEENSY2PP", 130048, 256),
    Mcu("TEENSYLC", 63488, 512),
    Mcu("TEENSY30", 131072, 1024),
    Mcu("TEENSY31", 262144, 1024),
    Mcu("TEENSY32", 262144, 1024),
    Mcu("TEENSY35", 524288, 1024),
    Mcu("TEENSY36", 1048576, 1024),
    Mcu("TEENSY40", 2031616, 1024),
    Mcu("TEENSY41", 8126464, 1024),
    Mcu("TEENSY_MICROMOD", 16515072, 1024),
]

def find_mcu(name: str) -> Mcu | None:
    """Поиск без учёта регистра, как в оригинальном loader'е."""
    wanted = name.strip().lower()
    for mcu in MCUS:
        if mcu.name.lower() == wanted:
            return mcu
    return None
