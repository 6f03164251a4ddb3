"""Configuration loading and validation.

Reads ``teamcal.toml`` from a config directory, parses all sections, and
returns a validated ``TeamcalConfig`` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_FILENAME = "teamcal.toml"
DEFAULT_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_CREDENTIALS_ENV = "TEAMCAL_GOOGLE_CREDENTIALS"

# Matches ${VAR_NAME} references (alphanumeric and underscore names).
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [teamcal.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ApiConfig:
    """Calendar-list REST settings from [teamcal.api]."""

    base_url: str = DEFAULT_API_BASE_URL
    default_color_id: str = "1"
    timeout_s: float = 30.0


@dataclass
class AuthConfig:
    """Credential settings from [teamcal.auth]."""

    credentials_env: str = DEFAULT_CREDENTIALS_ENV
    token_ttl_s: int = 50 * 60


@dataclass
class AutomationTimings:
    """Fixed settle intervals between page interactions.

    The calendar page offers no completion signal, so each step waits a fixed
    time before re-observing. Tests use ``AutomationTimings.immediate()``.
    """

    clear_settle_s: float = 0.5
    input_settle_s: float = 0.8
    submit_settle_s: float = 0.5
    observer_interval_s: float = 1.0

    @classmethod
    def immediate(cls) -> AutomationTimings:
        return cls(clear_settle_s=0.0, input_settle_s=0.0, submit_settle_s=0.0)


@dataclass
class PageSelectors:
    """CSS selectors for the calendar page, tried in order."""

    clear_control: list[str] = field(
        default_factory=lambda: [
            '[jsname="uXqWSe"]',
            '[aria-label*="検索をクリア"]',
            '[aria-label*="Clear search"]',
        ]
    )
    guest_input: list[str] = field(
        default_factory=lambda: [
            '[jsname="YPqjbf"]',
            '[aria-label*="ユーザーを検索"]',
            '[aria-label*="Search for people"]',
            '[aria-label*="予定に招待"]',
        ]
    )
    guest_section: list[str] = field(
        default_factory=lambda: [
            '[aria-label*="選択中のユーザー"]',
            '[role="listbox"][aria-label*="選択"]',
            '[role="listbox"][aria-label*="Selected"]',
        ]
    )
    guest_item: str = '[jsname="adtrT"]'
    calendar_section: list[str] = field(
        default_factory=lambda: [
            '[aria-label*="マイカレンダー"]',
            '[aria-label*="My calendars"]',
        ]
    )
    calendar_label: str = 'label, [role="listitem"]'
    list_region: list[str] = field(default_factory=lambda: ['[role="navigation"]', ".lSl5Nc"])


@dataclass
class AutomationConfig:
    """Page automation settings from [teamcal.automation]."""

    timings: AutomationTimings = field(default_factory=AutomationTimings)
    selectors: PageSelectors = field(default_factory=PageSelectors)


@dataclass
class TeamcalConfig:
    """Parsed and validated configuration."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    automation: AutomationConfig = field(default_factory=AutomationConfig)

    def credentials_json(self) -> str:
        """Return the OAuth credentials JSON from the configured env var."""
        raw = os.environ.get(self.auth.credentials_env)
        if raw is None or not raw.strip():
            raise ConfigError(f"Environment variable {self.auth.credentials_env} is not set")
        return raw


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _non_negative_float(section: dict[str, Any], key: str, default: float, path: str) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{path}.{key} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{path}.{key} must not be negative, got {value!r}")
    return value


def _positive_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise ConfigError(f"{path}.{key} must be an integer, got {raw!r}")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{path}.{key} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{path}.{key} must be positive, got {value!r}")
    return value


def _table(section: dict[str, Any], key: str) -> dict[str, Any]:
    value = section.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[teamcal.{key}] must be a table")
    return value


def _selector_list(raw: Any, key: str) -> list[str]:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or not raw or not all(isinstance(s, str) and s for s in raw):
        raise ConfigError(f"teamcal.automation.selectors.{key} must be a non-empty list of strings")
    return list(raw)


def _parse_selectors(section: dict[str, Any]) -> PageSelectors:
    selectors = PageSelectors()
    for key in ("clear_control", "guest_input", "guest_section", "calendar_section", "list_region"):
        if key in section:
            setattr(selectors, key, _selector_list(section[key], key))
    for key in ("guest_item", "calendar_label"):
        if key in section:
            raw = section[key]
            if not isinstance(raw, str) or not raw.strip():
                raise ConfigError(f"teamcal.automation.selectors.{key} must be a non-empty string")
            setattr(selectors, key, raw)
    return selectors


def _parse_automation(section: dict[str, Any]) -> AutomationConfig:
    path = "teamcal.automation"
    defaults = AutomationTimings()
    timings = AutomationTimings(
        **{
            key: _non_negative_float(section, key, getattr(defaults, key), path)
            for key in (
                "clear_settle_s",
                "input_settle_s",
                "submit_settle_s",
                "observer_interval_s",
            )
        }
    )
    selectors_section = section.get("selectors", {})
    if not isinstance(selectors_section, dict):
        raise ConfigError(f"{path}.selectors must be a table")
    return AutomationConfig(timings=timings, selectors=_parse_selectors(selectors_section))


def parse_config(data: dict[str, Any]) -> TeamcalConfig:
    """Validate an already-decoded TOML document."""
    data = resolve_env_vars(data)

    section = data.get("teamcal", {})
    if not isinstance(section, dict):
        raise ConfigError("[teamcal] must be a table")

    # --- [teamcal.logging] ---
    logging_section = _table(section, "logging")
    log_level = str(logging_section.get("level", "INFO")).upper()
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid teamcal.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    logging_config = LoggingConfig(
        level=log_level,
        format=log_format,
        log_root=logging_section.get("log_root"),
    )

    # --- [teamcal.api] ---
    api_section = _table(section, "api")
    base_url = str(api_section.get("base_url", DEFAULT_API_BASE_URL)).strip()
    if not base_url.startswith(("https://", "http://")):
        raise ConfigError(f"teamcal.api.base_url must be an http(s) URL, got {base_url!r}")
    color_id = str(api_section.get("default_color_id", "1")).strip()
    if not color_id:
        raise ConfigError("teamcal.api.default_color_id must be a non-empty string")
    api_config = ApiConfig(
        base_url=base_url,
        default_color_id=color_id,
        timeout_s=_non_negative_float(api_section, "timeout_s", 30.0, "teamcal.api"),
    )

    # --- [teamcal.auth] ---
    auth_section = _table(section, "auth")
    credentials_env = str(auth_section.get("credentials_env", DEFAULT_CREDENTIALS_ENV)).strip()
    if not credentials_env:
        raise ConfigError("teamcal.auth.credentials_env must be a non-empty string")
    auth_config = AuthConfig(
        credentials_env=credentials_env,
        token_ttl_s=_positive_int(auth_section, "token_ttl_s", 50 * 60, "teamcal.auth"),
    )

    return TeamcalConfig(
        logging=logging_config,
        api=api_config,
        auth=auth_config,
        automation=_parse_automation(_table(section, "automation")),
    )


def load_config(config_dir: Path) -> TeamcalConfig:
    """Load and validate ``teamcal.toml`` from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    toml_path = Path(config_dir) / CONFIG_FILENAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
