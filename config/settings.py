"""
Runtime settings for the intake tool.

Settings are read once, when the program starts, from three layers:

1. Defaults defined here
2. An optional YAML file (INTAKE_SETTINGS_FILE, or config/settings.yaml)
3. Environment variables (a .env file is loaded by main.py)

Later layers win. The result is a frozen Settings value that gets passed
to the components that need it. Switching between test and production
targets creates a new value with with_mode() instead of mutating the
current one.
"""

import os
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse

import yaml

from intake.errors import ConfigurationError

logger = logging.getLogger(__name__)

VALID_MODES = ("production", "test")
VALID_ENCODINGS = ("auto", "json", "multipart")

PROXY_PATH = "/api/delivery"
LOCAL_PROXY_URL = f"http://localhost:3000{PROXY_PATH}"
LOCAL_HOSTS = ("localhost", "127.0.0.1")

# Environment variable -> Settings field
ENV_FIELDS: Dict[str, str] = {
    "INTAKE_BASE_URL": "base_url",
    "INTAKE_WEBHOOK_MODE": "mode",
    "INTAKE_SECURE_WEBHOOK_URL": "override_url",
    "INTAKE_ORIGIN": "origin",
    "INTAKE_REQUEST_TIMEOUT": "request_timeout",
    "INTAKE_PACING_DELAY": "pacing_delay",
    "INTAKE_ATTACHMENT_ENCODING": "attachment_encoding",
    "INTAKE_MAX_LOCAL_ATTACHMENT_BYTES": "max_local_attachment_bytes",
    "INTAKE_PRICE_UNLOADING": "price_unloading",
    "INTAKE_PROXY_MODE_FALLBACK": "proxy_mode_fallback",
    "INTAKE_STORAGE": "storage",
    "INTAKE_LOG_LEVEL": "log_level",
    "N8N_WEBHOOK_URL": "upstream_url",
    "N8N_WEBHOOK_TEST_URL": "upstream_test_url",
    "CORS_ALLOWED_ORIGINS": "allowed_origins",
    "INTAKE_PROXY_HOST": "proxy_host",
    "INTAKE_PROXY_PORT": "proxy_port",
    "INTAKE_PROXY_TIMEOUT": "proxy_timeout",
}


@dataclass(frozen=True)
class Settings:
    """
    Immutable configuration for one run of the tool.

    Attributes:
        base_url: Configured delivery target, a proxy path or a webhook URL
        mode: "production" or "test"
        override_url: Hard override from the hosting environment (https only)
        origin: Origin used to resolve relative candidate URLs
        request_timeout: Seconds allowed per delivery attempt
        pacing_delay: Seconds to wait between records in a batch
        attachment_encoding: "auto", "json" or "multipart"
        max_local_attachment_bytes: Largest attachment kept locally, 0 = no limit
        price_unloading: Whether unloading records carry a price
        proxy_mode_fallback: Also try the other mode through the proxy
        storage: "memory" or a path to the SQLite file
        storage_key: Key the pending records are stored under
        upstream_url: Collector URL the proxy forwards to
        upstream_test_url: Collector URL for target=test, derived if unset
        allowed_origins: CORS allow-list for the proxy, empty allows any
    """

    base_url: str = ""
    mode: str = "production"
    override_url: Optional[str] = None
    origin: Optional[str] = None
    request_timeout: float = 12.0
    pacing_delay: float = 0.15
    attachment_encoding: str = "auto"
    max_local_attachment_bytes: int = 5 * 1024 * 1024
    price_unloading: bool = False
    proxy_mode_fallback: bool = False
    storage: str = "intake_records.db"
    storage_key: str = "intake.pending_records"
    log_level: str = "INFO"
    upstream_url: Optional[str] = None
    upstream_test_url: Optional[str] = None
    allowed_origins: Tuple[str, ...] = ()
    proxy_route: str = PROXY_PATH
    proxy_host: str = "127.0.0.1"
    proxy_port: int = 3000
    proxy_timeout: float = 30.0

    def __post_init__(self):
        self._validate()

    def _validate(self) -> None:
        if self.mode not in VALID_MODES:
            raise ConfigurationError(
                f"Invalid webhook mode: '{self.mode}'. Must be one of: {VALID_MODES}"
            )
        if self.attachment_encoding not in VALID_ENCODINGS:
            raise ConfigurationError(
                f"Invalid attachment encoding: '{self.attachment_encoding}'. "
                f"Must be one of: {VALID_ENCODINGS}"
            )
        if self.request_timeout <= 0 or self.proxy_timeout <= 0:
            raise ConfigurationError("Timeouts must be positive")
        if self.pacing_delay < 0:
            raise ConfigurationError("Pacing delay cannot be negative")
        if self.max_local_attachment_bytes < 0:
            raise ConfigurationError("max_local_attachment_bytes cannot be negative")

    def with_mode(self, mode: str) -> "Settings":
        """Return a copy targeting the given mode."""
        return replace(self, mode=mode)

    @property
    def is_test_mode(self) -> bool:
        return self.mode == "test"


# ============================================================
# Loading
# ============================================================

def _coerce(name: str, value: Any) -> Any:
    """Convert a raw env/YAML value to the type of the Settings field."""
    if value is None:
        return None

    defaults = {f.name: f.default for f in fields(Settings)}
    default = defaults[name]

    try:
        if isinstance(default, bool):
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        if isinstance(default, tuple):
            if isinstance(value, str):
                value = value.split(",")
            return tuple(str(v).strip() for v in value if str(v).strip())
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r} ({e})")

    text = str(value).strip()
    if default is None and not text:
        return None
    return text


def _load_yaml(config_file: Optional[Path]) -> Dict[str, Any]:
    """
    Load the optional settings YAML file.

    Returns:
        Mapping of setting names to raw values, empty if no file
    """
    if config_file is None:
        default_file = Path(__file__).parent / "settings.yaml"
        if not default_file.exists():
            return {}
        config_file = default_file

    if not config_file.exists():
        raise ConfigurationError(f"Settings file not found: {config_file}")

    with open(config_file, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file must contain a mapping: {config_file}")

    logger.info(f"Loaded {len(data)} setting(s) from {config_file.name}")
    return data


def detect_base_url(origin: Optional[str]) -> str:
    """
    Pick the default delivery target for the host the tool runs on.

    On a local machine (or with no origin configured) the local proxy is
    used; anywhere else the same-origin proxy path.
    """
    hostname = urlparse(origin).hostname if origin else None
    if hostname is None or hostname in LOCAL_HOSTS:
        return LOCAL_PROXY_URL
    return PROXY_PATH


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    config_file: Optional[Path] = None,
) -> Settings:
    """
    Build Settings from defaults, the YAML file and the environment.

    Args:
        env: Environment mapping, defaults to os.environ
        config_file: YAML file path, defaults to INTAKE_SETTINGS_FILE or
            config/settings.yaml when present

    Returns:
        A validated, frozen Settings value

    Raises:
        ConfigurationError: If any value is invalid
    """
    env = os.environ if env is None else env

    if config_file is None and env.get("INTAKE_SETTINGS_FILE"):
        config_file = Path(env["INTAKE_SETTINGS_FILE"])

    known = {f.name for f in fields(Settings)}
    values: Dict[str, Any] = {}

    for key, value in _load_yaml(config_file).items():
        name = "mode" if key == "webhook_mode" else key
        if name not in known:
            logger.warning(f"Ignoring unknown setting '{key}'")
            continue
        values[name] = _coerce(name, value)

    for env_var, name in ENV_FIELDS.items():
        if env.get(env_var) not in (None, ""):
            values[name] = _coerce(name, env[env_var])

    if isinstance(values.get("mode"), str):
        values["mode"] = values["mode"].lower()

    if not values.get("base_url"):
        values["base_url"] = detect_base_url(values.get("origin"))
        logger.info(f"No base URL configured, using {values['base_url']}")

    return Settings(**values)
