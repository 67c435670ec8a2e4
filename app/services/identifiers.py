"""Generation and validation of application ids and UINs."""

import logging
import re
import secrets
import string
import time
from collections.abc import Callable

from app.core.config import settings
from app.core.errors import IssuanceError

logger = logging.getLogger(__name__)

APPLICATION_ID_PREFIX = "APP"
_APPLICATION_ID_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def _clock_digits(count: int) -> str:
    return str(time.time_ns() // 1_000_000)[-count:]


def generate_uin(prefix: str | None = None) -> str:
    """Return a new UIN: prefix, the last 8 millisecond-clock digits, 2 random digits."""
    prefix = prefix or settings.UIN_PREFIX
    random_part = f"{secrets.randbelow(100):02d}"
    return f"{prefix}{_clock_digits(8)}{random_part}"


def validate_uin(uin: str, prefix: str | None = None) -> bool:
    prefix = prefix or settings.UIN_PREFIX
    return re.fullmatch(rf"{re.escape(prefix)}\d{{10}}", uin or "") is not None


def issue_uin(
    is_taken: Callable[[str], bool],
    max_attempts: int | None = None,
    generator: Callable[[], str] = generate_uin,
) -> str:
    """Generate a UIN nobody holds yet.

    ``is_taken`` must answer against every issued identifier (holders and
    approved applications). Raises ``IssuanceError`` once ``max_attempts``
    candidates have all collided.
    """
    attempts = max_attempts or settings.UIN_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        candidate = generator()
        if not is_taken(candidate):
            return candidate
        logger.warning("UIN candidate collided (attempt %s/%s)", attempt, attempts)
    raise IssuanceError(details={"attempts": attempts})


def generate_application_id() -> str:
    suffix = "".join(
        secrets.choice(_APPLICATION_ID_SUFFIX_ALPHABET) for _ in range(3)
    )
    return f"{APPLICATION_ID_PREFIX}{_clock_digits(8)}{suffix}"
