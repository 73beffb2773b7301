from __future__ import annotations

from ..config import MAX_ADDR, BLANK


class MemoryImage:
    """
    Разреженный образ флеш-памяти цели:
    - data: байты, записанные HEX-файлом
    - mask: 1 там, где запись была
    Буферы растут до старшего записанного адреса, а не до MAX_ADDR.
    Незаписанный адрес всегда читается как 0xFF (стёртая флеш).
    """

    def __init__(self, max_addr: int = MAX_ADDR):
        self.max_addr = max_addr
        self._data = bytearray()
        self._mask = bytearray()

    def clear(self):
        self._data = bytearray()
        self._mask = bytearray()

    def __len__(self) -> int:
        return len(self._mask)

    def write(self, address: int, data: bytes) -> None:
        end = address + len(data)
        if address < 0 or end > self.max_addr:
            raise ValueError(f"Write out of range: 0x{address:X}..0x{end:X}")
        if end > len(self._data):
            grow = end - len(self._data)
            self._data.extend(bytes([BLANK]) * grow)
            self._mask.extend(bytes(grow))
        self._data[address:end] = data
        self._mask[address:end] = b"\x01" * len(data)

    # ---------- запросы для программатора ----------
    def has_data_in_range(self, begin: int, end: int) -> bool:
        """Есть ли хоть один записанный байт в [begin, end] (включительно)."""
        if begin < 0 or begin >= self.max_addr or end < 0 or end >= self.max_addr:
            return False
        return self._mask.find(1, begin, end + 1) != -1

    # В _data незаписанные байты всегда 0xFF, поэтому маска для чтения не нужна.
    def read_block(self, address: int, length: int) -> bytes:
        if address < 0 or length < 0 or address + length > self.max_addr:
            return bytes([BLANK]) * max(length, 0)
        chunk = bytes(self._data[address:address + length])
        return chunk + bytes([BLANK]) * (length - len(chunk))

    def is_blank(self, address: int, length: int) -> bool:
        if address < 0 or address > self.max_addr:
            return True
        chunk = self._data[address:address + max(length, 0)]
        return chunk.count(BLANK) == len(chunk)

    # ---------- статистика ----------
    def byte_count(self) -> int:
        return self._mask.count(1)

    def extent(self) -> tuple[int, int] | None:
        first = self._mask.find(1)
        if first == -1:
            return None
        return first, self._mask.rfind(1)
