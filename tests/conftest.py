"""
conftest.py — общие фикстуры для тестов halfkay_tool.
"""
import sys
from pathlib import Path

import pytest

# Корень репозитория в sys.path, чтобы импортировать пакет без установки
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from halfkay_tool import config
from halfkay_tool.firmware.ihex import record_checksum

EOF_RECORD = ":00000001FF"


def make_record(rec_type: int, address: int, data: bytes = b"") -> str:
    cs = record_checksum(len(data), address, rec_type, data)
    return f":{len(data):02X}{address:04X}{rec_type:02X}{data.hex().upper()}{cs:02X}"


@pytest.fixture
def record():
    """Собрать строку Intel HEX с правильной контрольной суммой."""
    return make_record


@pytest.fixture
def write_hex(tmp_path):
    """Записать строки во временный .hex и вернуть путь."""
    def _write(lines, name="fw.hex"):
        p = tmp_path / name
        p.write_text("\n".join(lines) + "\n", encoding="ascii")
        return p
    return _write


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path, monkeypatch):
    """Логи и файл симулятора — во временной папке."""
    log_dir = tmp_path / "logs"
    monkeypatch.setattr(config, "LOG_FILE", log_dir / "session.jsonl")
    monkeypatch.setattr(config, "SIM_STORE", log_dir / "sim_flash.bin")
    return log_dir
