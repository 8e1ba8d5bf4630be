import logging
import os
import sys


class ColorFormatter(logging.Formatter):
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        record.levelname_colored = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


# Niveles usados en migration_logs -> niveles de logging
LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logger(name="mediateca", level=logging.INFO):
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(level)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)

    fmt = "%(asctime)s %(levelname_colored)s %(name)s: %(message)s"
    console.setFormatter(ColorFormatter(fmt, datefmt="%H:%M:%S"))

    logger.addHandler(console)

    return logger


# Logger principal de la aplicación
log = setup_logger(
    level=logging.getLevelName(os.getenv("LOG_LEVEL", "DEBUG").upper())
)


def get_logger(name):
    return logging.getLogger(f"mediateca.{name}")


def log_at(logger, level, message, *args):
    logger.log(LOG_LEVELS.get(level, logging.INFO), message, *args)
