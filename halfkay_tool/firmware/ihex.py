"""Чтение Intel HEX в MemoryImage.

Формат строки: ``:LLAAAATTDD...DDCC``

* ``LL``   — число байт данных
* ``AAAA`` — 16-битный адрес
* ``TT``   — тип записи (00 данные, 01 конец, 02/04 расширенный адрес)
* ``CC``   — дополнение до двух суммы всех предыдущих байт

Загрузка последовательная: первая битая строка прерывает всё,
уже принятые строки остаются в образе.
"""

from __future__ import annotations

from dataclasses import dataclass
from string import hexdigits as HEX_DIGITS
from pathlib import Path
from typing import Callable, Iterable

from ..config import FLEXSPI_OFFSET
from ..errors import FileError, ParseError
from .image import MemoryImage

REC_DATA = 0x00
REC_EOF = 0x01
REC_EXT_SEGMENT = 0x02
REC_EXT_LINEAR = 0x04

MIN_LINE_LEN = 11
MAX_RECORD_LEN = 255


@dataclass
class ParserState:
    extended_address: int = 0
    end_of_file_seen: bool = False
    byte_count: int = 0
    line_number: int = 0


def record_checksum(length: int, address: int, rec_type: int, data: bytes) -> int:
    """Контрольный байт, который должен стоять в конце записи."""
    total = length + (address >> 8) + (address & 0xFF) + rec_type + sum(data)
    return (-total) & 0xFF


def _hex(line: str, pos: int, width: int) -> int | None:
    field = line[pos:pos + width]
    if len(field) != width or not all(c in HEX_DIGITS for c in field):
        return None
    return int(field, 16)


class IntelHexLoader:
    """
    Парсер HEX с состоянием расширенного адреса.
    code_size/block_size нужны только для поправки FlexSPI у больших Teensy.
    on_warning получает текст о пропущенной записи расширенного адреса.
    """

    def __init__(
        self,
        image: MemoryImage,
        code_size: int = 0,
        block_size: int = 0,
        linear_offset: int = FLEXSPI_OFFSET,
        on_warning: Callable[[str], None] | None = None,
    ):
        self.image = image
        self.code_size = code_size
        self.block_size = block_size
        self.linear_offset = linear_offset
        self.on_warning = on_warning
        self.state = ParserState()

    def load(self, path: Path) -> int:
        path = Path(path)
        try:
            text = path.read_text(encoding="ascii", errors="replace")
        except OSError as e:
            raise FileError(f"Unable to read file {path}: {e}") from e
        return self.load_lines(text.splitlines())

    def load_lines(self, lines: Iterable[str]) -> int:
        self.image.clear()
        self.state = ParserState()
        for line in lines:
            self.state.line_number += 1
            line = line.rstrip()
            if line:
                self.parse_line(line)
            if self.state.end_of_file_seen:
                break
        return self.state.byte_count

    # ---------- одна запись ----------
    def parse_line(self, line: str) -> None:
        st = self.state
        n = st.line_number
        if not line.startswith(":") or len(line) < MIN_LINE_LEN:
            raise ParseError("not an Intel HEX record", n)

        length = _hex(line, 1, 2)
        if length is None:
            raise ParseError("bad length field", n)
        if len(line) < MIN_LINE_LEN + 2 * length:
            raise ParseError(f"record too short for {length} data bytes", n)
        address = _hex(line, 3, 4)
        rec_type = _hex(line, 7, 2)
        if address is None or rec_type is None:
            raise ParseError("bad address or type field", n)

        if rec_type in (REC_EXT_SEGMENT, REC_EXT_LINEAR) and length == 2:
            self._extended_address(line, address, rec_type)
            return

        data = bytearray()
        for i in range(length):
            value = _hex(line, 9 + 2 * i, 2)
            if value is None:
                raise ParseError(f"bad data byte {i}", n)
            data.append(value)
        checksum = _hex(line, 9 + 2 * length, 2)
        if checksum is None:
            raise ParseError("bad checksum field", n)
        if checksum != record_checksum(length, address, rec_type, data):
            raise ParseError("checksum mismatch", n)

        if rec_type == REC_DATA:
            target = address + st.extended_address
            if length > MAX_RECORD_LEN:
                raise ParseError("record longer than 255 bytes", n)
            if target + length > self.image.max_addr:
                raise ParseError(f"address 0x{target:X} beyond image limit", n)
            self.image.write(target, bytes(data))
            st.byte_count += length
        elif rec_type == REC_EOF:
            st.end_of_file_seen = True
        # прочие типы (03, 05, ...) пропускаем

    def _extended_address(self, line: str, address: int, rec_type: int) -> None:
        # Битая запись расширенного адреса не валит загрузку, а просто игнорируется.
        value = _hex(line, 9, 4)
        checksum = _hex(line, 13, 2)
        if value is None or checksum is None:
            self._warn("unparsable extended address record ignored")
            return
        if checksum != record_checksum(2, address, rec_type, value.to_bytes(2, "big")):
            self._warn("extended address checksum mismatch, record ignored")
            return

        if rec_type == REC_EXT_SEGMENT:
            self.state.extended_address = value << 4
            return
        ext = value << 16
        if (self.code_size > 1024 * 1024 and self.block_size >= 1024
                and self.linear_offset <= ext < self.linear_offset + self.code_size):
            ext -= self.linear_offset
        self.state.extended_address = ext

    def _warn(self, message: str):
        if self.on_warning:
            self.on_warning(f"line {self.state.line_number}: {message}")
