from __future__ import annotations
from pathlib import Path

from ..config import BLANK
from ..usb_transport.halfkay import hid_report, REPORT_ID
from .io import select_format
from .map import Mcu

class SimHalfKay:
    """
    Очень простой симулятор загрузчика HalfKay:
    - принимает HID-отчёты того же формата, что и настоящий
    - первый блок после open() стирает флеш (0xFF)
    - адрес за пределами code_size = команда "запустить программу"
    - при store сохраняет флеш в .bin на close()/boot

    appear_after: сколько первых open() вернут None (устройство ещё не в загрузчике)
    fail_at: номер записи (с нуля), на которой write() вернёт False
    """
    def __init__(self, mcu: Mcu, store: Path | None = None,
                 appear_after: int = 0, fail_at: int | None = None):
        self.mcu = mcu
        self.fmt = select_format(mcu.code_size, mcu.block_size)
        self.store = Path(store) if store else None
        self.appear_after = appear_after
        self.fail_at = fail_at
        self.flash = bytearray([BLANK]) * mcu.code_size
        self.reports: list[bytes] = []
        self.timeouts: list[float] = []
        self.open_calls = 0
        self.close_calls = 0
        self.is_open = False
        self.erased = False
        self.booted = False

    # ---- DeviceTransport ----
    def open(self):
        self.open_calls += 1
        if self.open_calls <= self.appear_after:
            return None
        self.is_open = True
        self.erased = False
        return self

    def write(self, handle, data: bytes, timeout: float) -> bool:
        if handle is not self or not self.is_open:
            return False
        if self.fail_at is not None and len(self.reports) == self.fail_at:
            return False
        report = hid_report(data)
        self.reports.append(report)
        self.timeouts.append(timeout)
        return self._handle_report(report)

    def close(self, handle) -> None:
        if not self.is_open:
            return
        self.is_open = False
        self.close_calls += 1
        self._save()

    # ---- "прошивка" загрузчика ----
    def _handle_report(self, report: bytes) -> bool:
        if report[0] != REPORT_ID:
            return False
        buf = report[1:]
        if len(buf) != self.fmt.write_size:
            return False
        address = self.fmt.decode_address(buf)
        if address >= self.mcu.code_size:
            self.booted = True
            self._save()
            return True
        if not self.erased:
            self.flash[:] = bytes([BLANK]) * len(self.flash)
            self.erased = True
        bs = self.fmt.block_size
        self.flash[address:address + bs] = buf[self.fmt.header_size:]
        return True

    def _save(self):
        if self.store is None:
            return
        self.store.parent.mkdir(parents=True, exist_ok=True)
        self.store.write_bytes(bytes(self.flash))

    def data_reports(self) -> list[bytes]:
        """Отчёты с блоками данных (без команды boot)."""
        hs = self.fmt.header_size
        return [r for r in self.reports
                if self.fmt.decode_address(r[1:1 + hs]) < self.mcu.code_size]

    def info(self) -> dict:
        return {
            "mcu": self.mcu.name,
            "code_size": self.mcu.code_size,
            "block_size": self.mcu.block_size,
            "write_size": self.fmt.write_size,
            "reports": len(self.reports),
            "booted": self.booted,
            "store": str(self.store) if self.store else None,
        }
