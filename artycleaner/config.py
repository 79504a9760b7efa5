import logging
import os
import re
import sys
from argparse import ArgumentDefaultsHelpFormatter, ArgumentParser
from datetime import datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ValidationError,
    field_validator,
    model_validator,
)
from yaml import YAMLError, safe_load

from artycleaner.utils import parse_duration

DEFAULT_CONFIG_FILE = Path("config/artycleaner.yaml")
DEFAULT_TIMEOUT = 20
LOG_FORMAT = "[%(asctime)s] [%(levelname)-8s] |> %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"

    @classmethod
    def parse(cls, value: str) -> "LogLevel":
        try:
            return cls(value.strip().upper())
        except ValueError:
            choices = ", ".join(level.value for level in cls)
            raise ValueError(f"Unknown log level '{value}', expected one of: {choices}") from None

    def to_logging(self) -> int:
        return {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARN: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
            LogLevel.FATAL: logging.CRITICAL,
        }[self]


class _ArgumentParser(ArgumentParser):
    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


class Args(BaseModel):
    config: Path = DEFAULT_CONFIG_FILE
    dryrun: bool = False
    log_level: LogLevel = LogLevel.INFO
    http_logs: bool = False

    @classmethod
    def from_args(cls, argv: list[str] | None = None) -> "Args":
        parser = _ArgumentParser(
            description="Purge stale artifacts from Artifactory repositories",
            formatter_class=ArgumentDefaultsHelpFormatter,
        )
        parser.add_argument(
            "-c",
            "--config",
            help="Configuration file",
            required=False,
            default=str(DEFAULT_CONFIG_FILE),
        )
        parser.add_argument(
            "--dryrun",
            action="store_true",
            help="Only log what would be deleted, nothing is removed",
            required=False,
            default=False,
        )
        parser.add_argument(
            "--log_level",
            type=LogLevel.parse,
            choices=list(LogLevel),
            help="Logging level",
            required=False,
            default=LogLevel.INFO,
        )
        parser.add_argument(
            "--http-logs",
            action="store_true",
            help="Enable http logs for every request",
            required=False,
            default=False,
        )
        args = parser.parse_args(argv)
        return cls(
            config=Path(args.config),
            dryrun=args.dryrun,
            log_level=args.log_level,
            http_logs=args.http_logs,
        )


class ApiSettings(BaseModel):
    endpoint: str
    username: str | None = None
    password: str | None = None
    api_key: str | None = None
    access_token: str | None = None
    ssl_verify: bool = True
    proxy: str | None = None
    timeout: int = DEFAULT_TIMEOUT

    @field_validator("username", "password", "api_key", "access_token")
    @classmethod
    def handle_env_vars(cls, v: str | None) -> str | None:
        if isinstance(v, str) and v.startswith("__ENV:"):
            name = v[6:].strip()
            value = os.environ.get(name, "")
            if not value:
                raise ValueError(f"Environment variable '{name}' is not set")
            return value
        return v

    @field_validator("endpoint")
    @classmethod
    def strip_endpoint(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("Field endpoint must be a valid url: <scheme>://<address>[:port][/path]")
        return value

    @field_validator("proxy")
    @classmethod
    def set_proxy(cls, value: str | None) -> str | None:
        if not value:
            return None
        if value.startswith("__ENV:"):
            value = os.environ.get(value[6:].strip(), "")
            if not value:
                return None

        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(
                "Field proxy must be a valid url: <scheme>://<address>[:port]; Remove value or fix it"
            )
        return value

    @field_validator("timeout")
    @classmethod
    def set_timeout(cls, value: int) -> int:
        if not 1 <= value <= 120:
            logging.error(f"Timeout must be in range 1-120. Set {DEFAULT_TIMEOUT}")
            return DEFAULT_TIMEOUT
        return value


class RepositoryPolicy(BaseModel):
    purge_ttl: str | int | None = None
    exclude_pattern: list[re.Pattern] = []
    include_pattern: list[re.Pattern] = []
    exclude_tags: list[re.Pattern] = []
    include_tags: list[re.Pattern] = []
    keep_tags: int = 0

    @field_validator(
        "exclude_pattern", "include_pattern", "exclude_tags", "include_tags", mode="before"
    )
    @classmethod
    def compile_patterns(cls, value: Any) -> list[re.Pattern]:
        if value is None:
            return []
        if isinstance(value, (str, re.Pattern)):
            value = [value]
        compiled = []
        for pattern in value:
            if isinstance(pattern, re.Pattern):
                compiled.append(pattern)
                continue
            try:
                compiled.append(re.compile(str(pattern)))
            except re.error as err:
                raise ValueError(f"Invalid pattern '{pattern}': {err}")
        return compiled

    @field_validator("keep_tags", mode="before")
    @classmethod
    def check_keep_tags(cls, value: Any) -> int:
        if value is None:
            return 0
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"keep_tags must be an integer, got {value!r}")
        if value < 0:
            raise ValueError("keep_tags must be greater than or equal to 0")
        return value

    @property
    def ttl(self) -> timedelta | None:
        return parse_duration(self.purge_ttl)

    def cutoff(self, now: datetime) -> datetime | None:
        ttl = self.ttl
        if not ttl:
            return None
        try:
            return now - ttl
        except OverflowError:
            logging.warning(f"Purge TTL '{self.purge_ttl}' reaches before year 1, purge TTL disabled")
            return None

    def describe(self) -> dict[str, Any]:
        return {
            "purge_ttl": self.purge_ttl,
            "exclude_pattern": [p.pattern for p in self.exclude_pattern],
            "include_pattern": [p.pattern for p in self.include_pattern],
            "exclude_tags": [p.pattern for p in self.exclude_tags],
            "include_tags": [p.pattern for p in self.include_tags],
            "keep_tags": self.keep_tags,
        }


def normalize_keys(tree: Any) -> Any:
    """Return a copy of a loaded YAML tree where every mapping key is a string."""
    if isinstance(tree, dict):
        return {str(key): normalize_keys(value) for key, value in tree.items()}
    if isinstance(tree, list):
        return [normalize_keys(item) for item in tree]
    return tree


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` onto ``base`` without mutating either.

    Values from ``override`` win. Nested mappings are merged key by key, lists
    and scalars from ``override`` replace the base value entirely.
    """
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def resolve_policy(
    defaults: dict[str, Any] | None, override: dict[str, Any] | None
) -> RepositoryPolicy:
    return RepositoryPolicy.model_validate(deep_merge(defaults or {}, override or {}))


class Config(BaseModel):
    api: ApiSettings
    defaults: dict[str, Any] = {}
    repos: dict[str, dict[str, Any]]
    args: Args
    policies: dict[str, RepositoryPolicy] = {}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Config":
        return Config.model_validate(data)

    @field_validator("defaults", mode="before")
    @classmethod
    def set_defaults(cls, value: Any) -> dict[str, Any]:
        return value or {}

    @field_validator("repos", mode="before")
    @classmethod
    def check_repos(cls, value: Any) -> dict[str, Any]:
        if not value or not isinstance(value, dict):
            raise ValueError("At least one repository must be configured under 'repos'")
        return {str(key): override or {} for key, override in value.items()}

    @model_validator(mode="after")
    def resolve_policies(self) -> "Config":
        policies = {}
        for key, override in self.repos.items():
            try:
                policies[key] = resolve_policy(self.defaults, override)
            except ValidationError as err:
                raise ValueError(f"Invalid policy for repository '{key}': {err}")
        self.policies = policies
        return self

    @property
    def default_policy(self) -> RepositoryPolicy:
        return resolve_policy(self.defaults, None)


def load_config(args: Args) -> Config:
    try:
        with open(args.config, "r") as conf_file:
            data = safe_load(conf_file)
    except (OSError, YAMLError) as err:
        logging.critical(f"Failed to load configuration - {err}")
        exit(1)

    if not isinstance(data, dict):
        logging.critical(f"Failed to load configuration - {args.config} is not a mapping")
        exit(1)

    try:
        return Config.from_dict({**normalize_keys(data), "args": args})
    except ValidationError as e:
        logging.critical(f"Invalid config: {e}")
        exit(1)
