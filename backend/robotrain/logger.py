from datetime import datetime
from enum import Enum

from .config import LOG_LEVEL

class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"

_SEVERITY = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARNING: 30,
    LogLevel.ERROR: 40,
}

class Logger:
    COLORS = {
        "reset": "\033[0m",
        "red": "\033[91m",
        "green": "\033[92m",
        "yellow": "\033[93m",
        "blue": "\033[94m",
        "orange": "\033[33m",
        "magenta": "\033[95m",
        "cyan": "\033[96m",
        "white": "\033[97m"
    }

    default_color = "white"
    threshold = LogLevel.__members__.get(LOG_LEVEL, LogLevel.INFO)

    @classmethod
    def enabled(cls, level) -> bool:
        # Custom tags (SIMULATOR, BROADCASTER, ...) are always shown
        if not isinstance(level, LogLevel):
            return True
        return _SEVERITY[level] >= _SEVERITY[cls.threshold]

    @classmethod
    def log(cls, message: str, level, color=None):
        if not cls.enabled(level):
            return

        if isinstance(level, LogLevel):
            label = level.value
        else:
            label = str(level).upper()

        color_code = cls.COLORS.get(color or cls.default_color, cls.COLORS["white"])
        stamp = datetime.now().strftime("%H:%M:%S")
        print(f"# {stamp} {color_code}{label}{cls.COLORS['reset']}:  {message}")

    @classmethod
    def info(cls, message: str, color=None):
        cls.log(message, LogLevel.INFO, color or "green")

    @classmethod
    def warning(cls, message: str, color=None):
        cls.log(message, LogLevel.WARNING, color or "orange")

    @classmethod
    def error(cls, message: str, color=None):
        cls.log(message, LogLevel.ERROR, color or "red")

    @classmethod
    def debug(cls, message: str, color=None):
        cls.log(message, LogLevel.DEBUG, color or "blue")

    @classmethod
    def custom(cls, message: str, tag: str, color=None):
        cls.log(message, tag, color or "cyan")
