"""Исключения движка источника Томсона"""


class ThomsonSourceError(Exception):
    """Базовое исключение для всех ошибок источника"""


class ComputationCancelled(ThomsonSourceError):
    """Вычисление остановлено по запросу вызывающей стороны"""


class ConfigurationError(ThomsonSourceError, ValueError):
    """Недопустимый параметр конфигурации или модели пучка"""


class RaySinkError(ThomsonSourceError):
    """Ошибка приёмника лучей"""


class RaySinkIOError(RaySinkError):
    """Ошибка ввода-вывода при записи луча"""


class RaySinkFormatError(RaySinkError):
    """Луч не соответствует формату приёмника"""


class SinkNotOpenError(RaySinkError):
    """Приёмник лучей не открыт"""
