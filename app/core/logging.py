import logging
import sys
from pythonjsonlogger import jsonlogger
from app.core.config import Settings


class ServiceContextFilter(logging.Filter):
    """
    Stamps service and environment on every record.
    """

    def __init__(self, service: str, environment: str):
        super().__init__()
        self.service = service
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        record.environment = self.environment
        return True


def build_formatter() -> logging.Formatter:
    # non-ASCII messages are kept as-is
    return jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger"},
        json_ensure_ascii=False,
    )


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # clear handlers if reloaded
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter())
    handler.addFilter(ServiceContextFilter(settings.app_name, settings.environment))
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    # no statement echo: bound parameters carry signature images
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
