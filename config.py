import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from detect import DEFAULT_TIMEOUT_MS
from environment import DEFAULT_PREFIX

log = logging.getLogger("detect-ec2")


@dataclass
class Settings:
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    prefix: str = DEFAULT_PREFIX
    log_level: str = "WARNING"


def _positive_int(raw: str, default: int) -> int:
    try:
        value = int(raw)
    except ValueError:
        log.warning("ignoring invalid DETECT_EC2_TIMEOUT %r", raw)
        return default
    return value if value > 0 else default


def _log_level(raw: str) -> str:
    level = raw.upper()
    if not isinstance(logging.getLevelName(level), int):
        log.warning("ignoring unknown DETECT_EC2_LOG_LEVEL %r", raw)
        return "WARNING"
    return level


def load_settings() -> Settings:
    """Read defaults from the environment, after loading a .env file if present."""
    load_dotenv()

    timeout = os.environ.get("DETECT_EC2_TIMEOUT")
    return Settings(
        timeout_ms=_positive_int(timeout, DEFAULT_TIMEOUT_MS) if timeout else DEFAULT_TIMEOUT_MS,
        prefix=os.environ.get("DETECT_EC2_PREFIX", DEFAULT_PREFIX),
        log_level=_log_level(os.environ.get("DETECT_EC2_LOG_LEVEL", "WARNING")),
    )
