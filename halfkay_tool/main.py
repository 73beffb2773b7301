from __future__ import annotations
import json
from pathlib import Path
from datetime import datetime, timezone

import typer
from rich import print

from . import config
from .errors import LoaderError
from .firmware.map import MCUS, find_mcu, Mcu
from .firmware.io import (
    flash_firmware, boot_device, load_hex, select_format, iter_blocks, usage_percent,
)
from .firmware.simulate import SimHalfKay
from .usb_transport.halfkay import HalfKayUSB

app = typer.Typer(add_completion=False, help="HalfKay CLI: запись Intel HEX в Teensy через USB-загрузчик.")

def _log_event(kind: str, payload: dict):
    config.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    record = {
        "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "kind": kind,
        "payload": payload,
    }
    with open(config.LOG_FILE, "a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False) + "\n")

def _resolve_mcu(name: str) -> Mcu:
    mcu = find_mcu(name)
    if mcu is None:
        print(f"[red]Неизвестный тип MCU:[/] {name}")
        print("Список поддерживаемых: [cyan]list-mcus[/]")
        raise typer.Exit(code=2)
    return mcu

def _transport(mcu: Mcu, demo: bool):
    if demo:
        print("[yellow]Демо-режим: вместо USB используется симулятор загрузчика.[/]")
        return SimHalfKay(mcu, store=config.SIM_STORE)
    return HalfKayUSB()

def _fail(kind: str, e: Exception):
    _log_event(kind, {"error": type(e).__name__, "message": str(e)})
    print(f"[red]Ошибка:[/] {e}")
    raise typer.Exit(code=1)

@app.command("list-mcus")
def list_mcus():
    """Показать поддерживаемые MCU."""
    print("[bold]Поддерживаемые MCU:[/]")
    for mcu in MCUS:
        print(f" - [cyan]{mcu.name}[/] code={mcu.code_size} block={mcu.block_size}")

@app.command("hex-info")
def hex_info(
    in_file: Path = typer.Argument(..., help="Intel HEX файл"),
    mcu_name: str = typer.Option(..., "--mcu", help="Тип MCU, напр. TEENSY40"),
):
    """
    Разобрать HEX и показать, что будет записано. USB не трогаем.
    """
    mcu = _resolve_mcu(mcu_name)
    try:
        fmt = select_format(mcu.code_size, mcu.block_size)
        image, count = load_hex(in_file, mcu, on_warning=lambda m: print(f"[yellow]{m}[/]"))
    except LoaderError as e:
        _fail("hex_info_error", e)

    extent = image.extent()
    blocks = sum(1 for _ in iter_blocks(image, fmt))
    info = {
        "file": str(in_file),
        "mcu": mcu.name,
        "bytes": count,
        "usage": round(usage_percent(count, mcu), 1),
        "extent": [f"0x{extent[0]:06X}", f"0x{extent[1]:06X}"] if extent else None,
        "regime": fmt.regime.value,
        "write_size": fmt.write_size,
        "blocks": blocks,
    }
    print(json.dumps(info, ensure_ascii=False, indent=2))

@app.command()
def flash(
    in_file: Path = typer.Argument(..., help="Intel HEX файл для записи"),
    mcu_name: str = typer.Option(..., "--mcu", help="Тип MCU, напр. TEENSY40"),
    wait: bool = typer.Option(False, "--wait", "-w", help="Ждать появления устройства"),
    no_reboot: bool = typer.Option(False, "--no-reboot", "-n", help="Не перезагружать после записи"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Подробный вывод"),
    demo: bool = typer.Option(False, help="Симулятор вместо реального загрузчика"),
):
    """
    Записать HEX в устройство и (по умолчанию) запустить программу.
    """
    mcu = _resolve_mcu(mcu_name)

    def say(msg: str, **kw):
        if verbose:
            print(msg, **kw)

    def on_loaded(count: int):
        say(f'Прочитан "{in_file}": {count} байт, {usage_percent(count, mcu):.1f}% памяти')

    def on_wait():
        say("[yellow]Жду устройство Teensy...[/]")
        say(" (подсказка: нажми кнопку reset)")

    first = True
    def progress(block):
        nonlocal first
        if first:
            say("Найден загрузчик HalfKay")
            say("Запись", end="")
            first = False
        say(".", end="")

    say("HalfKay Loader, Command Line")
    transport = _transport(mcu, demo)
    try:
        result = flash_firmware(
            transport, in_file, mcu, wait=wait, reboot=not no_reboot,
            on_loaded=on_loaded, on_wait=on_wait, progress=progress,
            on_warning=lambda m: print(f"[yellow]Предупреждение HEX:[/] {m}"),
        )
    except LoaderError as e:
        if not first:
            say("")
        _fail("flash_error", e)
    except KeyboardInterrupt:
        print("\n[yellow]Прервано.[/]")
        raise typer.Exit(code=130)

    if demo:
        result["sim"] = transport.info()
    say("")
    if not no_reboot:
        if result["rebooted"]:
            say("Перезагрузка")
        else:
            print("[yellow]Команда перезагрузки не подтверждена устройством.[/]")
    _log_event("flash", result)
    print(f"[green]Готово:[/] {result['bytes']} байт, блоков записано {result['blocks']} из {result['source']}")
    if verbose:
        print(f"\n[dim]Логи записаны в: {config.LOG_FILE}[/]")

@app.command()
def boot(
    mcu_name: str = typer.Option(..., "--mcu", help="Тип MCU, напр. TEENSY40"),
    wait: bool = typer.Option(False, "--wait", "-w", help="Ждать появления устройства"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Подробный вывод"),
    demo: bool = typer.Option(False, help="Симулятор вместо реального загрузчика"),
):
    """
    Только запустить программу, без записи.
    """
    mcu = _resolve_mcu(mcu_name)
    transport = _transport(mcu, demo)

    def on_wait():
        if verbose:
            print("[yellow]Жду устройство Teensy...[/]")
            print(" (подсказка: нажми кнопку reset)")

    try:
        result = boot_device(transport, mcu, wait=wait, on_wait=on_wait)
    except LoaderError as e:
        _fail("boot_error", e)
    except KeyboardInterrupt:
        print("\n[yellow]Прервано.[/]")
        raise typer.Exit(code=130)

    if demo:
        result["sim"] = transport.info()
    _log_event("boot", result)
    if result["rebooted"]:
        print("[green]Загрузка программы отправлена.[/]")
    else:
        print("[yellow]Команда перезагрузки не подтверждена устройством.[/]")


if __name__ == "__main__":
    app()
