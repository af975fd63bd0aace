"""Boot-time config snapshot with secrets masked."""

from tradein.common.config import CommonSettings
from tradein.common.logging import logger

SECRET_MARKERS = ("key", "secret", "password", "token", "dsn")


def redacted_config(config: CommonSettings, fields: list[str]) -> dict[str, object]:
    """Selected settings as loggable values; secret-like names are masked."""

    snapshot: dict[str, object] = {}
    for field in fields:
        value = getattr(config, field, None)
        if value is None or value == "":
            snapshot[field] = "<unset>"
        elif any(marker in field.lower() for marker in SECRET_MARKERS):
            snapshot[field] = "<redacted>"
        else:
            snapshot[field] = value
    return snapshot


def log_startup_config(config: CommonSettings, fields: list[str]) -> None:
    logger.info("startup_config service=%s config=%s", config.service_name, redacted_config(config, fields))
