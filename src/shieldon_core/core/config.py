"""Firewall option tree.

The firewall is configured through a JSON document whose sections mirror the
dotted option names used throughout the core (``session.expire``,
``filters.frequency.config.quota_s``, ``cronjob.reset_circle.config.last_update``
and so on). This module validates that document with Pydantic, applies the
documented defaults for every optional value, and persists changes made by the
core itself (the reset cycle writes ``last_update`` back).

Example:
    from shieldon_core.core.config import FirewallConfig
    config = FirewallConfig.load("shieldon.json")
    config.get_option("filters.frequency.config.quota_s")  # -> 2
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from shieldon_core.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

LAST_UPDATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_MISSING = object()


class OptionModel(BaseModel):
    """Base of every option section; keys the core does not model are kept."""

    model_config = ConfigDict(extra="allow")


class SessionOptions(OptionModel):
    """Session record lifetime and garbage-collection sampling."""

    expire: int = Field(default=600, ge=1)
    gc_probability: int = Field(default=1, ge=1)
    gc_divisor: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _divisor_not_below_probability(self) -> "SessionOptions":
        if self.gc_divisor < self.gc_probability:
            raise ValueError("session.gc_divisor must be >= session.gc_probability")
        return self


class UnusualBehaviorConfig(OptionModel):
    quota: int = Field(default=5, ge=1)


class BufferedBehaviorConfig(UnusualBehaviorConfig):
    # Seconds after the first visit before the signal is checked.
    time_buffer: int = Field(default=5, ge=0)


class CookieFilterConfig(BufferedBehaviorConfig):
    cookie_name: str = "ssjd"
    cookie_value: str = "1"
    cookie_domain: str = ""


class FrequencyConfig(OptionModel):
    quota_s: int = Field(default=2, ge=1)
    quota_m: int = Field(default=10, ge=1)
    quota_h: int = Field(default=30, ge=1)
    quota_d: int = Field(default=60, ge=1)


class SessionFilter(OptionModel):
    enable: bool = True
    config: BufferedBehaviorConfig = Field(default_factory=BufferedBehaviorConfig)


class CookieFilter(OptionModel):
    enable: bool = True
    config: CookieFilterConfig = Field(default_factory=CookieFilterConfig)


class RefererFilter(OptionModel):
    enable: bool = True
    config: BufferedBehaviorConfig = Field(default_factory=BufferedBehaviorConfig)


class FrequencyFilter(OptionModel):
    enable: bool = True
    config: FrequencyConfig = Field(default_factory=FrequencyConfig)


class FilterOptions(OptionModel):
    session: SessionFilter = Field(default_factory=SessionFilter)
    cookie: CookieFilter = Field(default_factory=CookieFilter)
    referer: RefererFilter = Field(default_factory=RefererFilter)
    frequency: FrequencyFilter = Field(default_factory=FrequencyFilter)


class EscalationPathOptions(OptionModel):
    enable: bool = True
    buffer: int = Field(default=10, ge=1)


class FailedAttemptsOptions(OptionModel):
    data_circle: EscalationPathOptions = Field(default_factory=EscalationPathOptions)
    system_firewall: EscalationPathOptions = Field(
        default_factory=lambda: EscalationPathOptions(enable=False)
    )


class EventOptions(OptionModel):
    failed_attempts_in_a_row: FailedAttemptsOptions = Field(default_factory=FailedAttemptsOptions)


class RecordAttemptOptions(OptionModel):
    detection_period: int = Field(default=5, ge=0)
    time_to_reset: int = Field(default=1800, ge=1)


class ResetCircleConfig(OptionModel):
    period: int = Field(default=86400, ge=1)
    last_update: str = ""

    @field_validator("last_update")
    @classmethod
    def _parseable_timestamp(cls, value: str) -> str:
        if value:
            datetime.strptime(value, LAST_UPDATE_FORMAT)
        return value


class ResetCircleOptions(OptionModel):
    enable: bool = True
    config: ResetCircleConfig = Field(default_factory=ResetCircleConfig)


class CronjobOptions(OptionModel):
    reset_circle: ResetCircleOptions = Field(default_factory=ResetCircleOptions)


class ExcludedUrl(OptionModel):
    url: str


class RecaptchaConfig(OptionModel):
    secret_key: str = ""
    verify_url: str = "https://www.google.com/recaptcha/api/siteverify"
    timeout_seconds: float = Field(default=5.0, gt=0)


class RecaptchaModule(OptionModel):
    enable: bool = False
    config: RecaptchaConfig = Field(default_factory=RecaptchaConfig)


class CaptchaModules(OptionModel):
    recaptcha: RecaptchaModule = Field(default_factory=RecaptchaModule)


class SessionLimitConfig(OptionModel):
    # Visitors allowed online at once, and how long a session counts as online.
    count: int = Field(default=100, ge=1)
    period: int = Field(default=300, ge=1)


class SessionLimitOptions(OptionModel):
    enable: bool = False
    config: SessionLimitConfig = Field(default_factory=SessionLimitConfig)


class PolicyOptions(OptionModel):
    # Verdict applied when storage cannot answer a quota check in time.
    on_storage_failure: Literal["allow", "deny"] = "allow"


class FirewallOptions(OptionModel):
    """Root of the firewall option tree.

    Keys the core does not model (IP manager, components, loggers...) are kept
    as-is at every level, so the document written back by
    :meth:`FirewallConfig.save` does not lose them.
    """

    channel_id: str = ""
    session: SessionOptions = Field(default_factory=SessionOptions)
    online_session_limit: SessionLimitOptions = Field(default_factory=SessionLimitOptions)
    filters: FilterOptions = Field(default_factory=FilterOptions)
    events: EventOptions = Field(default_factory=EventOptions)
    record_attempt: RecordAttemptOptions = Field(default_factory=RecordAttemptOptions)
    cronjob: CronjobOptions = Field(default_factory=CronjobOptions)
    excluded_urls: list[ExcludedUrl] = Field(default_factory=list)
    captcha_modules: CaptchaModules = Field(default_factory=CaptchaModules)
    policy: PolicyOptions = Field(default_factory=PolicyOptions)


def _validate(data: dict[str, Any]) -> FirewallOptions:
    try:
        return FirewallOptions.model_validate(data)
    except ValidationError as err:
        raise ConfigurationError(f"Invalid firewall configuration: {err}") from err


class FirewallConfig:
    """Validated firewall options with dotted access and JSON persistence."""

    def __init__(self, options: FirewallOptions | None = None, path: str | Path | None = None) -> None:
        self._options = options or FirewallOptions()
        self._path = Path(path) if path is not None else None
        self._lock = threading.Lock()

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str | Path | None = None) -> "FirewallConfig":
        """Build a configuration from a plain mapping, applying defaults."""
        return cls(_validate(dict(data)), path=path)

    @classmethod
    def load(cls, path: str | Path) -> "FirewallConfig":
        """Read the option tree from ``path``.

        A missing file yields the defaults; the file is created on the first
        :meth:`save`.

        Raises:
            ConfigurationError: If the file is not valid JSON or fails validation.
        """
        file_path = Path(path)
        if not file_path.exists():
            logger.info("Firewall configuration %s not found; using defaults", file_path)
            return cls(path=file_path)
        try:
            data = json.loads(file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as err:
            raise ConfigurationError(f"Cannot read firewall configuration {file_path}: {err}") from err
        if not isinstance(data, dict):
            raise ConfigurationError(f"Firewall configuration {file_path} must be a JSON object")
        return cls.from_dict(data, path=file_path)

    @property
    def options(self) -> FirewallOptions:
        return self._options

    @property
    def path(self) -> Path | None:
        return self._path

    def as_dict(self) -> dict[str, Any]:
        return self._options.model_dump(mode="json")

    def get_option(self, option: str, default: Any = None) -> Any:
        """Return the value at a dotted ``option`` path, or ``default``."""
        node: Any = self.as_dict()
        for part in option.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set_option(self, option: str, value: Any) -> None:
        """Set a dotted option and revalidate the whole tree.

        Raises:
            ConfigurationError: If the new value makes the tree invalid.
        """
        with self._lock:
            data = self.as_dict()
            parts = option.split(".")
            node = data
            for part in parts[:-1]:
                child = node.get(part, _MISSING)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            node[parts[-1]] = value
            self._options = _validate(data)

    def save(self) -> None:
        """Persist the option tree to its file, replacing it atomically."""
        if self._path is None:
            logger.debug("Firewall configuration has no backing file; skip save")
            return
        payload = json.dumps(self.as_dict(), indent=4, sort_keys=True)
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".shieldon-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self._path)
        except OSError as err:
            Path(tmp_name).unlink(missing_ok=True)
            raise ConfigurationError(f"Cannot write firewall configuration {self._path}: {err}") from err
