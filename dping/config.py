"""YAML configuration file loading."""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
USER_AGENT = f"dping/{VERSION}"

DEFAULT_CONFIG_DIR = Path.home() / ".dping"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_DB_PATH = str(DEFAULT_CONFIG_DIR / "dping.db")
DEFAULT_GRAPHQL_URL = "https://query.joystream.org/graphql"


@dataclass
class DpingConfig:
    """Top-level configuration for the dping tool.

    All fields have defaults so a bare ``dping --once`` works against
    the public indexing service.

    Attributes:
        db_path: Path to the SQLite database results are written to.
        graphql_url: Indexing service queried for distribution operators.
        source_id: Identifier of this probing host, stamped on every
            record.  None is reported as ``"unknown"``.
        test_asset_id: Id of the sample asset every node is asked for.
        request_timeout_seconds: Timeout applied to each HTTP request.
        probe_timeout_seconds: Upper bound for one operator's whole probe
            (status request plus asset download).
        degradation_threshold: Largest tolerated distance, in blocks, from
            the reference values before an operator counts as degraded.
        interval_minutes: Minutes between cycles in interval mode.
        max_concurrency: Cap on probes in flight, or None for one task
            per operator.
    """

    db_path: str = DEFAULT_DB_PATH
    graphql_url: str = DEFAULT_GRAPHQL_URL
    source_id: str | None = None
    test_asset_id: str = "1343"
    request_timeout_seconds: float = 10.0
    probe_timeout_seconds: float = 30.0
    degradation_threshold: int = 10
    interval_minutes: float = 5
    max_concurrency: int | None = None

    @property
    def source(self) -> str:
        return self.source_id or "unknown"


# Keys in the YAML file that map to DpingConfig fields.
_YAML_KEY_TO_FIELD: dict[str, str] = {
    "db_path": "db_path",
    "graphql_url": "graphql_url",
    "source_id": "source_id",
    "test_asset_id": "test_asset_id",
    "request_timeout_seconds": "request_timeout_seconds",
    "probe_timeout_seconds": "probe_timeout_seconds",
    "degradation_threshold": "degradation_threshold",
    "interval_minutes": "interval_minutes",
    "max_concurrency": "max_concurrency",
}

# Fields that must be strictly positive numbers when set.
_POSITIVE_FIELDS = (
    "request_timeout_seconds",
    "probe_timeout_seconds",
    "interval_minutes",
)


def load_config(path: Path | str | None = None) -> DpingConfig:
    """Load configuration from a YAML file.

    Args:
        path: Explicit path to a YAML config file.  If ``None``, the
            default location (``~/.dping/config.yaml``) is tried.  If the
            default file doesn't exist, a ``DpingConfig`` with all defaults
            is returned silently.

    Returns:
        A populated ``DpingConfig`` instance.

    Raises:
        FileNotFoundError: If an explicit *path* was given but doesn't exist.
        ConfigError: If the file contains invalid YAML, has an unexpected
            top-level structure or holds out-of-range values.
    """
    resolved = _resolve_path(path)

    if resolved is None:
        logger.debug("No config file found; using defaults")
        return DpingConfig()

    logger.debug("Loading config from %s", resolved)
    text = resolved.read_text(encoding="utf-8")

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {resolved}: {exc}") from exc

    if raw is None:
        # Empty file: all defaults.
        return DpingConfig()

    if not isinstance(raw, dict):
        raise ConfigError(
            f"Expected a YAML mapping at the top level in {resolved}, "
            f"got {type(raw).__name__}"
        )

    return _build_config(raw, source=resolved)


class ConfigError(Exception):
    """Raised when a configuration file is malformed or unreadable."""


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


def _resolve_path(path: Path | str | None) -> Path | None:
    """Return a concrete ``Path`` to read, or ``None`` if nothing to read.

    Raises:
        FileNotFoundError: If the caller supplied an explicit path that
            doesn't exist on disk.
    """
    if path is not None:
        p = Path(path).expanduser()
        if not p.is_file():
            raise FileNotFoundError(f"Config file not found: {p}")
        return p

    default = DEFAULT_CONFIG_PATH.expanduser()
    if default.is_file():
        return default
    return None


def _build_config(raw: dict, source: Path) -> DpingConfig:
    """Map raw YAML dict to a ``DpingConfig``, ignoring unknown keys."""
    kwargs: dict[str, object] = {}

    for yaml_key, field_name in _YAML_KEY_TO_FIELD.items():
        if yaml_key in raw:
            kwargs[field_name] = raw[yaml_key]

    unknown = set(raw) - set(_YAML_KEY_TO_FIELD)
    if unknown:
        logger.warning(
            "Ignoring unknown config keys in %s: %s",
            source,
            ", ".join(sorted(unknown)),
        )

    for name in _POSITIVE_FIELDS:
        value = kwargs.get(name)
        if value is not None and (
            isinstance(value, bool)
            or not isinstance(value, (int, float))
            or value <= 0
        ):
            raise ConfigError(f"{name} in {source} must be a positive number")

    max_concurrency = kwargs.get("max_concurrency")
    if max_concurrency is not None and (
        isinstance(max_concurrency, bool)
        or not isinstance(max_concurrency, int)
        or max_concurrency < 1
    ):
        raise ConfigError(f"max_concurrency in {source} must be an integer >= 1")

    if "test_asset_id" in kwargs:
        kwargs["test_asset_id"] = str(kwargs["test_asset_id"])

    return DpingConfig(**kwargs)
