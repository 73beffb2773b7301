import os
from pathlib import Path

APP_NAME = "HalfKay CLI"

LOG_DIR = Path(os.environ.get("HALFKAY_LOG_DIR", Path(__file__).parent / "logs"))
LOG_FILE = LOG_DIR / "session.jsonl"
SIM_STORE = LOG_DIR / "sim_flash.bin"

# Образ в памяти: верхняя граница адресов и значение стёртой флеш
MAX_ADDR = 0x1000000
BLANK = 0xFF

# Teensy 4.x: линкер кладёт код по адресу FlexSPI
FLEXSPI_OFFSET = 0x60000000

# HalfKay bootloader
VENDOR_ID = 0x16C0
PRODUCT_ID = 0x0478

# Таймауты, секунды
FIRST_BLOCK_TIMEOUT = 5.0   # первый блок стирает чип
BLOCK_TIMEOUT = 0.5
BOOT_TIMEOUT = 0.5
POLL_INTERVAL = 0.25
WRITE_RETRY_DELAY = 0.01
