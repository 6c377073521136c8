import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler

_FORMAT = "[%(asctime)s] [%(name)s] %(message)s"

# Chatty libraries whose DEBUG output would drown the analysis logs.
_QUIET_LOGGERS = ("urllib3", "httpx", "httpcore", "multipart")


def _handlers(log_path: str, console_level: int) -> list[logging.Handler]:
    formatter = logging.Formatter(_FORMAT, "%H:%M:%S")

    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.DEBUG)
    file_handler.name = "analyst_file"

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(console_level)
    stream_handler.name = "analyst_stream"
    return [file_handler, stream_handler]


def _replace_handlers(logger: logging.Logger, handlers: list[logging.Handler]) -> None:
    logger.handlers = []
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False


def configure_logging(logs_dir: str | None = None, console_level: str = "INFO") -> str:
    """Send every log record to a rotating server log and the console.

    The file always gets DEBUG; ``console_level`` only filters the console.
    Returns the path of the new server log.
    """
    logs_dir = logs_dir or os.path.join(os.getcwd(), "logs")
    os.makedirs(logs_dir, exist_ok=True)
    log_path = os.path.join(logs_dir, f"server_{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}.log")

    level = logging.getLevelName(str(console_level).upper())
    if not isinstance(level, int):
        level = logging.INFO
    handlers = _handlers(log_path, level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    _replace_handlers(root_logger, handlers)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.setLevel(logging.INFO)
        _replace_handlers(uv_logger, handlers)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)

    root_logger.info("Logging initialized: %s console_level=%s", log_path, logging.getLevelName(level))
    return log_path
