import json
import logging
import os
import time
from logging.handlers import RotatingFileHandler


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y"}


class UtcFormatter(logging.Formatter):
    converter = time.gmtime


class JsonFormatter(UtcFormatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


def _build_file_handler(path: str, level: str, formatter: logging.Formatter) -> RotatingFileHandler:
    max_bytes = int(os.getenv("LOG_MAX_BYTES", "5000000"))
    backup_count = int(os.getenv("LOG_BACKUP_COUNT", "5"))
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> None:
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_file_path = os.getenv("LOG_FILE_PATH", "").strip()
    client_log_file_path = os.getenv("CLIENT_LOG_FILE_PATH", "").strip()
    json_enabled = _get_bool(os.getenv("LOG_JSON_ENABLED", "false"))

    if json_enabled:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = UtcFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file_path:
        root_logger.addHandler(_build_file_handler(log_file_path, log_level, formatter))

    client_logger = logging.getLogger("client")
    client_logger.handlers.clear()
    client_logger.propagate = False
    client_logger.setLevel(log_level)
    client_logger.addHandler(console_handler)
    if client_log_file_path:
        client_logger.addHandler(_build_file_handler(client_log_file_path, log_level, formatter))

    logging.getLogger("uvicorn.access").handlers.clear()


def format_client_message(message: str, context: dict | None = None) -> str:
    if not context:
        return message
    payload = {"message": message, "context": context}
    return json.dumps(payload, separators=(",", ":"), default=str)
