import logging
import time
from copy import deepcopy
from typing import Any, Iterable, Optional

from uvicorn.config import LOGGING_CONFIG

ASCTIME_TOKEN = "%(asctime)s.%(msecs)03d"
DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name_or_obj: Any) -> logging.Logger:
    """Return a logger using the module name but strip the leading
    "server.src." prefix so overrides can use shorter names
    (e.g. "services.fetcher").

    Accept either a module/string or an object with __name__.
    """
    if hasattr(name_or_obj, "__name__"):
        name = getattr(name_or_obj, "__name__")
    else:
        name = str(name_or_obj)

    prefix = "server.src."
    if name.startswith(prefix):
        name = name[len(prefix):]

    return logging.getLogger(name)


logger = get_logger(__name__)


def parse_logger_override(raw: str) -> Optional[tuple[str, str]]:
    """Parse a NAME:LEVEL pair, stripping quotes/whitespace.

    Returns (name, upper-cased level) or None when the pair is malformed or
    the level is unknown.
    """
    if ":" not in raw:
        return None
    name, level = raw.split(":", 1)
    name = name.strip().strip('"').strip("'")
    level = level.strip().strip('"').strip("'").upper()
    if not name or not isinstance(logging.getLevelName(level), int):
        logger.warning("Skipping invalid log level '%s' for logger '%s'", level, name)
        return None
    return name, level


def _normalize_formatter(fmt: dict) -> None:
    fmt_str = fmt.get("fmt")
    if not fmt_str:
        return
    if ("%(asctime)s" in fmt_str or ASCTIME_TOKEN in fmt_str) and "%(name)s" in fmt_str:
        fmt.setdefault("datefmt", DATEFMT)
        return

    if "%(message)s" in fmt_str:
        if "%(asctime)s" not in fmt_str and ASCTIME_TOKEN not in fmt_str:
            fmt_str = ASCTIME_TOKEN + " " + fmt_str
        if "%(name)s" not in fmt_str:
            fmt_str = fmt_str.replace("%(message)s", "%(name)s: %(message)s")
    elif "%(levelprefix)s" in fmt_str or "%(levelname)s" in fmt_str:
        level_token = "%(levelprefix)s" if "%(levelprefix)s" in fmt_str else "%(levelname)s"
        parts = fmt_str.split(level_token, 1)
        after = parts[1].lstrip() if len(parts) > 1 else ""
        prefix = ASCTIME_TOKEN + " " + level_token + " %(name)s: "
        fmt_str = prefix + parts[0].rstrip() + (" " + after if after else "")

    fmt["fmt"] = fmt_str
    fmt.setdefault("datefmt", DATEFMT)


def build_log_config(level: str, overrides: Iterable[str] = ()) -> dict:
    """Derive a dictConfig from uvicorn's defaults.

    Every formatter gets a UTC timestamp and the logger name before the
    message. ``overrides`` are NAME:LEVEL pairs applied in order, so later
    entries win.
    """
    log_config = deepcopy(LOGGING_CONFIG)
    desired_level = level.upper()

    log_config.setdefault("root", {"level": desired_level, "handlers": ["default"]})
    log_config.setdefault("loggers", {})
    log_config["root"]["level"] = desired_level

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger_cfg = log_config["loggers"].setdefault(
            logger_name,
            {
                "handlers": ["default"],
                "level": desired_level,
                "propagate": logger_name != "uvicorn.access",
            },
        )
        logger_cfg["level"] = desired_level

    # Use UTC for asctime in log output
    logging.Formatter.converter = time.gmtime

    for fmt in log_config.get("formatters", {}).values():
        if isinstance(fmt, dict):
            _normalize_formatter(fmt)

    for raw in overrides:
        parsed = parse_logger_override(raw)
        if parsed is None:
            continue
        name, override_level = parsed
        log_config["loggers"].setdefault(name, {})["level"] = override_level

    return log_config
