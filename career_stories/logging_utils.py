"""Logging setup for the career stories CLI and workers.

The root handler is a SafeStreamHandler so output piped into ``head`` or a
worker whose stdout disappears never crashes a generation run. HTTP client
chatter from the OpenAI SDK is kept at WARNING unless DEBUG is requested.
"""
import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every request at INFO
NOISY_LOGGERS = ("openai", "httpx", "httpcore")


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that ignores broken pipe and closed file errors."""

    def emit(self, record):
        try:
            super().emit(record)
        except BrokenPipeError:
            pass  # stdout closed
        except ValueError:
            pass  # I/O operation on closed file


def configure_safe_logging(level=logging.INFO):
    """Attach a SafeStreamHandler to the root logger.

    Calling again is a no-op for the handler; the level is only ever
    lowered, never raised.

    Args:
        level: Logging level to set (default: INFO)
    """
    root = logging.getLogger()
    if not any(isinstance(h, SafeStreamHandler) for h in root.handlers):
        handler = SafeStreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
        root.addHandler(handler)
    # openai can leave the root logger at WARNING after import
    if root.level == logging.NOTSET or root.level > level:
        root.setLevel(level)

    library_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
