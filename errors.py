"""
errors.py
Иерархия исключений генератора.
Ядро никогда не глотает ошибки: всё, что здесь объявлено, долетает до вызывающего кода.
"""
from typing import Optional


class StringArtError(Exception):
    """Базовое исключение пакета."""


class InvalidConfiguration(StringArtError, ValueError):
    """Нарушено предусловие конфигурации (проверяется до любой работы с пикселями)."""

    def __init__(self, parameter: str, message: str):
        self.parameter = parameter
        super().__init__(f"{parameter}: {message}")


class InvalidInput(StringArtError, ValueError):
    """Пустой, None или некорректный по форме входной буфер."""


class InternalInconsistency(StringArtError, RuntimeError):
    """
    Программная ошибка: раскладка и таблица путей рассинхронизированы.
    В нормальной работе не возникает.
    """


class GenerationCancelled(StringArtError):
    """Генерация остановлена по событию отмены или по таймауту."""

    def __init__(self, reason: str, iteration: Optional[int] = None):
        self.reason = reason
        self.iteration = iteration
        where = f" (итерация {iteration})" if iteration is not None else ""
        super().__init__(f"Генерация прервана: {reason}{where}")
