import time
import usb.core
import usb.util

from ..config import VENDOR_ID, PRODUCT_ID, WRITE_RETRY_DELAY
from ..errors import DeviceError

REPORT_ID = 0
MAX_REPORT = 1089          # report id + 64-байтный заголовок + 1024 данных

# HID SET_REPORT по control pipe
REQ_TYPE_CLASS_OUT = 0x21
HID_SET_REPORT = 0x09
HID_REPORT_OUTPUT = 0x02


def hid_report(buf: bytes) -> bytes:
    """Кадр HID: перед блоком всегда идёт байт report id (0)."""
    return bytes([REPORT_ID]) + bytes(buf)


class HalfKayUSB:
    """
    Минимальный слой для загрузчика HalfKay (Teensy) через pyusb/libusb.
    open() -> handle | None, write(handle, data, timeout) -> bool, close(handle).
    Запись повторяется каждые 10 мс, пока не истечёт таймаут:
    пока чип стирается, загрузчик отвечает ошибкой.
    """

    def __init__(self, vendor_id: int = VENDOR_ID, product_id: int = PRODUCT_ID,
                 interface: int = 0, retry_delay: float = WRITE_RETRY_DELAY,
                 clock=time.monotonic, sleep=time.sleep):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.interface = interface
        self.retry_delay = retry_delay
        self._clock = clock
        self._sleep = sleep

    def open(self):
        try:
            dev = usb.core.find(idVendor=self.vendor_id, idProduct=self.product_id)
        except usb.core.NoBackendError as e:
            raise DeviceError("USB backend (libusb) not available") from e
        if dev is None:
            return None
        try:
            if dev.is_kernel_driver_active(self.interface):
                dev.detach_kernel_driver(self.interface)
        except (NotImplementedError, usb.core.USBError):
            # на Windows/macOS драйвер ядра не отцепляется
            pass
        try:
            usb.util.claim_interface(dev, self.interface)
        except usb.core.USBError:
            usb.util.dispose_resources(dev)
            return None
        return dev

    def write(self, handle, data: bytes, timeout: float) -> bool:
        if handle is None:
            return False
        report = hid_report(data)
        if len(report) > MAX_REPORT:
            return False
        w_value = (HID_REPORT_OUTPUT << 8) | report[0]
        payload = report[1:]
        deadline = self._clock() + timeout
        while True:
            remaining_ms = max(int((deadline - self._clock()) * 1000), 1)
            try:
                n = handle.ctrl_transfer(REQ_TYPE_CLASS_OUT, HID_SET_REPORT, w_value,
                                         self.interface, payload, timeout=remaining_ms)
                if n > 0:
                    return True
            except usb.core.USBError:
                pass
            if self._clock() >= deadline:
                return False
            self._sleep(self.retry_delay)

    def close(self, handle) -> None:
        if handle is None:
            return
        try:
            usb.util.release_interface(handle, self.interface)
        except usb.core.USBError:
            pass
        usb.util.dispose_resources(handle)
