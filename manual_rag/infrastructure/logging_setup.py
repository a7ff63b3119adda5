import logging
import logging.config
import os


class LevelPrefixFormatter(logging.Formatter):
    """Marks warnings and errors so they stand out in a console tail."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        if record.levelno >= logging.ERROR:
            return f"✗ {line}"
        if record.levelno == logging.WARNING:
            return f"⚠ {line}"
        return line


def setup_logging(level: str | None = None) -> logging.Logger:
    """
    Configure root logging once for the CLI and API entry points.

    Level comes from the argument, else LOG_LEVEL, else INFO.
    httpx request lines are only shown in debug mode.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "info")).upper()
    debug_mode = level_name == "DEBUG"
    loglevel = getattr(logging, level_name, logging.INFO)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "()": LevelPrefixFormatter,
                "format": "%(asctime)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": loglevel,
                "stream": "ext://sys.stdout",
            },
        },
        "root": {
            "handlers": ["console"],
            "level": loglevel,
        },
    })

    logging.getLogger("httpx").setLevel(logging.DEBUG if debug_mode else logging.WARNING)
    logging.getLogger("chromadb").setLevel(logging.DEBUG if debug_mode else logging.WARNING)

    return logging.getLogger("manual_rag")
