from __future__ import annotations


class LoaderError(Exception):
    """Базовая ошибка: любая из них завершает запуск."""


class FileError(LoaderError):
    """HEX-файл не найден или не читается."""


class ParseError(LoaderError):
    def __init__(self, message: str, line: int | None = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class DeviceError(LoaderError):
    """Устройство не найдено или запись не прошла."""


class ConfigError(LoaderError):
    """Неподдерживаемая комбинация code size / block size."""
