"""
test_halfkay.py — USB-транспорт HalfKay поверх pyusb (устройство замокано).
"""
from unittest.mock import MagicMock

import pytest
import usb.core

from halfkay_tool.errors import DeviceError
from halfkay_tool.usb_transport import halfkay
from halfkay_tool.usb_transport.halfkay import HalfKayUSB, hid_report, MAX_REPORT


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += 0.1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport(clock):
    return HalfKayUSB(clock=clock, sleep=clock.sleep)


def test_hid_report_prefix():
    assert hid_report(b"\x01\x02") == b"\x00\x01\x02"


class TestWrite:

    def test_set_report(self, transport):
        handle = MagicMock()
        handle.ctrl_transfer.return_value = 130
        data = bytes(range(130))
        assert transport.write(handle, data, 0.5)
        args, kwargs = handle.ctrl_transfer.call_args
        assert args[:4] == (0x21, 0x09, 0x0200, 0)
        assert bytes(args[4]) == data
        assert kwargs["timeout"] == 500

    def test_retries_while_busy(self, transport, clock):
        handle = MagicMock()
        handle.ctrl_transfer.side_effect = [usb.core.USBError("pipe"), usb.core.USBError("pipe"), 1088]
        assert transport.write(handle, bytes(1088), 5.0)
        assert handle.ctrl_transfer.call_count == 3
        assert clock.sleeps == [0.01, 0.01]

    def test_gives_up_after_timeout(self, transport, clock):
        handle = MagicMock()
        handle.ctrl_transfer.side_effect = usb.core.USBError("timeout")
        assert not transport.write(handle, bytes(130), 0.5)
        assert handle.ctrl_transfer.call_count >= 2
        assert clock.now >= 0.5

    def test_zero_length_accept_is_failure(self, transport):
        handle = MagicMock()
        handle.ctrl_transfer.return_value = 0
        assert not transport.write(handle, bytes(130), 0.2)

    def test_oversize_refused(self, transport):
        handle = MagicMock()
        assert not transport.write(handle, bytes(MAX_REPORT), 0.5)
        handle.ctrl_transfer.assert_not_called()

    def test_no_handle(self, transport):
        assert not transport.write(None, bytes(130), 0.5)


class TestOpenClose:

    def test_not_found(self, transport, monkeypatch):
        find = MagicMock(return_value=None)
        monkeypatch.setattr(halfkay.usb.core, "find", find)
        assert transport.open() is None
        find.assert_called_once_with(idVendor=0x16C0, idProduct=0x0478)

    def test_missing_backend_is_device_error(self, transport, monkeypatch):
        find = MagicMock(side_effect=usb.core.NoBackendError("No backend available"))
        monkeypatch.setattr(halfkay.usb.core, "find", find)
        with pytest.raises(DeviceError):
            transport.open()

    def test_open_detaches_and_claims(self, transport, monkeypatch):
        dev = MagicMock()
        dev.is_kernel_driver_active.return_value = True
        claim = MagicMock()
        monkeypatch.setattr(halfkay.usb.core, "find", MagicMock(return_value=dev))
        monkeypatch.setattr(halfkay.usb.util, "claim_interface", claim)
        assert transport.open() is dev
        dev.detach_kernel_driver.assert_called_once_with(0)
        claim.assert_called_once_with(dev, 0)

    def test_open_without_kernel_driver_support(self, transport, monkeypatch):
        dev = MagicMock()
        dev.is_kernel_driver_active.side_effect = NotImplementedError
        monkeypatch.setattr(halfkay.usb.core, "find", MagicMock(return_value=dev))
        monkeypatch.setattr(halfkay.usb.util, "claim_interface", MagicMock())
        assert transport.open() is dev

    def test_claim_failure(self, transport, monkeypatch):
        dev = MagicMock()
        dev.is_kernel_driver_active.return_value = False
        dispose = MagicMock()
        monkeypatch.setattr(halfkay.usb.core, "find", MagicMock(return_value=dev))
        monkeypatch.setattr(halfkay.usb.util, "claim_interface",
                            MagicMock(side_effect=usb.core.USBError("busy")))
        monkeypatch.setattr(halfkay.usb.util, "dispose_resources", dispose)
        assert transport.open() is None
        dispose.assert_called_once_with(dev)

    def test_close_is_idempotent(self, transport, monkeypatch):
        dev = MagicMock()
        release = MagicMock(side_effect=[None, usb.core.USBError("not claimed")])
        dispose = MagicMock()
        monkeypatch.setattr(halfkay.usb.util, "release_interface", release)
        monkeypatch.setattr(halfkay.usb.util, "dispose_resources", dispose)
        transport.close(dev)
        transport.close(dev)
        transport.close(None)
        assert dispose.call_count == 2
