import base64
import logging
import math
import re
import sys
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from logging import LogRecord
from typing import TYPE_CHECKING, Any, Iterable

import dateutil.parser

if TYPE_CHECKING:
    from artycleaner.config import ApiSettings, Args, RepositoryPolicy

DURATION_RE = re.compile(r"(?P<num>\d+(?:\.\d+)?)\s*(?P<unit>[a-z]+)")
DURATION_FILLER_RE = re.compile(r"[\s,]+|\band\b")
DURATION_UNITS = {
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
    "w": 7 * 86400,
    "wk": 7 * 86400,
    "wks": 7 * 86400,
    "week": 7 * 86400,
    "weeks": 7 * 86400,
    "mo": 30 * 86400,
    "mos": 30 * 86400,
    "month": 30 * 86400,
    "months": 30 * 86400,
    "y": 365 * 86400,
    "yr": 365 * 86400,
    "yrs": 365 * 86400,
    "year": 365 * 86400,
    "years": 365 * 86400,
}


class Colors(StrEnum):
    RED = "\033[31m"
    CRED = "\033[91m"
    YELLOW = "\033[33m"
    RESET = "\033[0m"


class ColoredFormatter(logging.Formatter):
    def __init__(self, fmt: str | None = None, datefmt: str | None = None) -> None:
        self.format_ = fmt
        self.datefmt_ = datefmt
        self.FORMATS = {
            logging.WARNING: f"{Colors.YELLOW}{self.format_}{Colors.RESET}",
            logging.ERROR: f"{Colors.RED}{self.format_}{Colors.RESET}",
            logging.CRITICAL: f"{Colors.CRED}{self.format_}{Colors.RESET}",
        }
        super().__init__(fmt, datefmt)

    def format(self, record: LogRecord) -> str:
        log_fmt = self.FORMATS.get(record.levelno, self.format_)
        formatter = logging.Formatter(log_fmt, self.datefmt_)
        return formatter.format(record)


def init_logger(args: "Args") -> None:
    from artycleaner.config import LOG_DATE_FORMAT, LOG_FORMAT

    logging.getLogger("httpx").disabled = not args.http_logs
    logging.getLogger("httpcore").disabled = not args.http_logs

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(ColoredFormatter(LOG_FORMAT, LOG_DATE_FORMAT))
    logging.basicConfig(
        level=args.log_level.to_logging(), handlers=[stream_handler], force=True
    )


def true_utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_duration(value: str | int | float | None) -> timedelta | None:
    """Parse a human duration such as ``30d``, ``2 weeks 3 days`` or ``1h30m``.

    Bare numbers are seconds. Returns None for empty, zero or unparsable
    values, which callers treat as "no TTL".
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _to_timedelta(value, value)

    text = str(value).strip().lower()
    if not text:
        return None
    try:
        seconds = float(text)
    except ValueError:
        seconds = 0.0
        for match in DURATION_RE.finditer(text):
            unit = DURATION_UNITS.get(match.group("unit"))
            if unit is None:
                logging.warning(f"Unknown duration unit in '{value}', purge TTL disabled")
                return None
            seconds += float(match.group("num")) * unit
        if DURATION_FILLER_RE.sub("", DURATION_RE.sub("", text)):
            logging.warning(f"Unable to parse duration '{value}', purge TTL disabled")
            return None
    return _to_timedelta(seconds, value)


def _to_timedelta(seconds: float, value: Any) -> timedelta | None:
    try:
        if math.isfinite(seconds):
            return timedelta(seconds=seconds) if seconds > 0 else None
    except OverflowError:
        pass
    logging.warning(f"Duration '{value}' is out of range, purge TTL disabled")
    return None


def parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return from_epoch_millis(value)
    parsed = dateutil.parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def from_epoch_millis(value: int | float) -> datetime | None:
    if not value or value <= 0:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def to_epoch_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def matches(patterns: Iterable[re.Pattern] | None, subject: str) -> bool:
    if not patterns:
        return False
    return any(pattern.search(subject) for pattern in patterns)


def is_excluded(policy: "RepositoryPolicy", name: str, tag: str | None = None) -> bool:
    skip = False
    if matches(policy.exclude_pattern, name):
        skip = True
    if matches(policy.include_pattern, name):
        skip = False
    if skip or tag is None:
        return skip

    if matches(policy.exclude_tags, tag):
        skip = True
    if matches(policy.include_tags, tag):
        skip = False
    return skip


def build_headers(settings: "ApiSettings") -> dict[str, str]:
    headers = {
        "Accept": "application/json",
        "User-Agent": "Artifactory cleaner",
    }
    if settings.access_token:
        headers["Authorization"] = f"Bearer {settings.access_token}"
    elif settings.api_key:
        headers["X-JFrog-Art-Api"] = settings.api_key
    elif settings.username and settings.password:
        basic_auth = base64.standard_b64encode(
            f"{settings.username}:{settings.password}".encode()
        ).decode()
        headers["Authorization"] = f"Basic {basic_auth}"
    return headers
