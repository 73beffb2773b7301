# firmware/io.py
from __future__ import annotations
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol, Callable, Iterator, Any

from ..config import (
    FIRST_BLOCK_TIMEOUT, BLOCK_TIMEOUT, BOOT_TIMEOUT, POLL_INTERVAL,
)
from ..errors import ConfigError, DeviceError
from .image import MemoryImage
from .ihex import IntelHexLoader
from .map import Mcu

# ---- Транспортный протокол ----
class DeviceTransport(Protocol):
    def open(self) -> Any | None: ...
    def write(self, handle: Any, data: bytes, timeout: float) -> bool: ...
    def close(self, handle: Any) -> None: ...

# ---- Формат блока на проводе ----
class HeaderRegime(Enum):
    ADDR16 = "A"       # маленькие AVR: абсолютный адрес, 16 бит LE
    PAGE_INDEX = "B"   # AVR > 64K: номер 256-байтной страницы
    PADDED64 = "C"     # Kinetis/iMXRT: 24-битный адрес + 61 ноль

@dataclass(frozen=True)
class BlockFormat:
    regime: HeaderRegime
    code_size: int
    block_size: int

    @property
    def header_size(self) -> int:
        return 64 if self.regime is HeaderRegime.PADDED64 else 2

    @property
    def write_size(self) -> int:
        return self.block_size + self.header_size

    def encode_header(self, address: int) -> bytes:
        if self.regime is HeaderRegime.ADDR16:
            return bytes([address & 0xFF, (address >> 8) & 0xFF])
        if self.regime is HeaderRegime.PAGE_INDEX:
            return bytes([(address >> 8) & 0xFF, (address >> 16) & 0xFF])
        return address.to_bytes(3, "little") + bytes(61)

    def decode_address(self, wire: bytes) -> int:
        """Обратное к encode_header: адрес из начала блока."""
        if self.regime is HeaderRegime.ADDR16:
            return wire[0] | (wire[1] << 8)
        if self.regime is HeaderRegime.PAGE_INDEX:
            return (wire[0] << 8) | (wire[1] << 16)
        return int.from_bytes(wire[0:3], "little")

def select_format(code_size: int, block_size: int) -> BlockFormat:
    """Выбор заголовка один раз на весь запуск."""
    if block_size <= 256 and code_size < 0x10000:
        regime = HeaderRegime.ADDR16
    elif block_size == 256:
        regime = HeaderRegime.PAGE_INDEX
    elif block_size in (512, 1024):
        regime = HeaderRegime.PADDED64
    else:
        raise ConfigError(f"Unknown code/block size: code_size={code_size}, block_size={block_size}")
    return BlockFormat(regime, code_size, block_size)

@dataclass
class Block:
    address: int
    header: bytes
    payload: bytes

    def wire(self) -> bytes:
        return self.header + self.payload

# ---- План записи ----
def iter_blocks(image: MemoryImage, fmt: BlockFormat) -> Iterator[Block]:
    """
    Блоки [0, code_size) с шагом block_size.
    Первый блок отдаём всегда: по нему загрузчик стирает чип.
    Остальные — только если HEX их трогал и там не одни 0xFF.
    """
    bs = fmt.block_size
    for addr in range(0, fmt.code_size, bs):
        if addr > 0:
            if not image.has_data_in_range(addr, addr + bs - 1):
                continue
            if image.is_blank(addr, bs):
                continue
        yield Block(addr, fmt.encode_header(addr), image.read_block(addr, bs))

def program_blocks(transport: DeviceTransport, handle: Any, image: MemoryImage,
                   fmt: BlockFormat, progress: Callable[[Block], None] | None = None) -> dict:
    written = 0
    sent = 0
    for block in iter_blocks(image, fmt):
        timeout = FIRST_BLOCK_TIMEOUT if written == 0 else BLOCK_TIMEOUT
        if progress:
            progress(block)
        data = block.wire()
        if not transport.write(handle, data, timeout):
            raise DeviceError(f"error writing block at 0x{block.address:06X}")
        written += 1
        sent += len(data)
    total = len(range(0, fmt.code_size, fmt.block_size))
    return {"blocks": written, "skipped": total - written, "sent": sent}

def boot_buffer(write_size: int) -> bytes:
    buf = bytearray(write_size)
    buf[0:3] = b"\xFF\xFF\xFF"
    return bytes(buf)

def boot(transport: DeviceTransport, handle: Any, write_size: int) -> bool:
    """Команда загрузчику: выйти и запустить программу."""
    return transport.write(handle, boot_buffer(write_size), BOOT_TIMEOUT)

# ---- Поиск устройства ----
def acquire_device(transport: DeviceTransport, wait: bool = False,
                   interval: float = POLL_INTERVAL,
                   on_wait: Callable[[], None] | None = None,
                   sleep: Callable[[float], None] = time.sleep) -> tuple[Any, bool]:
    """
    Открыть загрузчик. В режиме wait опрашиваем без ограничения по времени
    (прерывается Ctrl-C). Возвращает (handle, ждали_ли).
    """
    waited = False
    while True:
        handle = transport.open()
        if handle is not None:
            return handle, waited
        if not wait:
            raise DeviceError("Unable to open device (hint: try --wait)")
        if not waited:
            if on_wait:
                on_wait()
            waited = True
        sleep(interval)

# ---- Высокоуровневые операции ----
def load_hex(hex_path: Path, mcu: Mcu, on_warning: Callable[[str], None] | None = None) -> tuple[MemoryImage, int]:
    image = MemoryImage()
    loader = IntelHexLoader(image, mcu.code_size, mcu.block_size, on_warning=on_warning)
    count = loader.load(hex_path)
    return image, count

def usage_percent(count: int, mcu: Mcu) -> float:
    return count / mcu.code_size * 100.0

def flash_firmware(transport: DeviceTransport, hex_path: Path, mcu: Mcu,
                   wait: bool = False, reboot: bool = True,
                   on_loaded: Callable[[int], None] | None = None,
                   on_wait: Callable[[], None] | None = None,
                   progress: Callable[[Block], None] | None = None,
                   on_warning: Callable[[str], None] | None = None,
                   sleep: Callable[[float], None] = time.sleep) -> dict:
    """
    HEX -> образ -> блоки -> устройство.
    Файл читаем до USB, чтобы ошибки в нём всплыли раньше.
    Если пришлось ждать устройство, файл перечитываем: его могли пересобрать.
    """
    hex_path = Path(hex_path)
    fmt = select_format(mcu.code_size, mcu.block_size)

    image, count = load_hex(hex_path, mcu, on_warning)
    if on_loaded:
        on_loaded(count)

    handle, waited = acquire_device(transport, wait, on_wait=on_wait, sleep=sleep)
    try:
        if waited:
            image, count = load_hex(hex_path, mcu, on_warning)
            if on_loaded:
                on_loaded(count)
        result = program_blocks(transport, handle, image, fmt, progress)
        # перезагрузка после успешной записи — best effort, результат не фатален
        booted = boot(transport, handle, fmt.write_size) if reboot else False
    finally:
        transport.close(handle)

    result.update({
        "bytes": count,
        "usage": round(usage_percent(count, mcu), 1),
        "source": str(hex_path),
        "mcu": mcu.name,
        "waited": waited,
        "rebooted": booted,
    })
    return result

def boot_device(transport: DeviceTransport, mcu: Mcu, wait: bool = False,
                on_wait: Callable[[], None] | None = None,
                sleep: Callable[[float], None] = time.sleep) -> dict:
    fmt = select_format(mcu.code_size, mcu.block_size)
    handle, waited = acquire_device(transport, wait, on_wait=on_wait, sleep=sleep)
    try:
        booted = boot(transport, handle, fmt.write_size)
    finally:
        transport.close(handle)
    return {"mcu": mcu.name, "waited": waited, "rebooted": booted, "write_size": fmt.write_size}
