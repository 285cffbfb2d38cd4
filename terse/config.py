"""Configuration for terse.

Settings are layered, later layers winning per key:
1. Built-in defaults
2. Global file `<terse home>/config.toml`
3. Project file `./.terse.toml`
4. `TERSE_*` environment variables
5. Performance profile (fast / balanced / quality)

The terse home is `~/.terse`, or `$TERSE_HOME` when set.
"""

import copy
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml
import yaml

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG",
    "MODES",
    "PROFILES",
    "TerseConfig",
    "GeneralConfig",
    "FastPathConfig",
    "SmartPathConfig",
    "OutputThresholds",
    "PreprocessingConfig",
    "RouterConfig",
    "PassthroughConfig",
    "LoggingConfig",
    "terse_home",
    "global_config_path",
    "project_config_path",
    "load_config",
    "init_config",
    "set_config_value",
    "reset_config",
    "render_config",
]

logger = logging.getLogger(__name__)

MODES = ("hybrid", "fast-only", "smart-only", "passthrough")
PROFILES = ("fast", "balanced", "quality")
RENDER_FORMATS = ("toml", "json", "yaml")

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


class ConfigError(Exception):
    """Raised for unknown keys, invalid values and unwritable config files."""


DEFAULT_CONFIG: Dict[str, Any] = {
    "general": {
        "enabled": True,
        "mode": "hybrid",
        "profile": "balanced",
        "safe_mode": False,
        "command_timeout_secs": 0.0,  # 0 = no limit
    },
    "fast_path": {
        "enabled": True,
        "optimizers": {"git": True, "file": True, "build": True, "docker": True},
    },
    "smart_path": {
        "enabled": False,
        "model": "llama3.2:1b",
        "ollama_url": "http://localhost:11434",
        "temperature": 0.0,
        "max_latency_ms": 30000,
        "cold_start_timeout_ms": 120000,
        "max_output_ratio": 0.9,
    },
    "output_thresholds": {
        "passthrough_below_bytes": 2048,
        "smart_path_above_bytes": 10240,
    },
    "preprocessing": {
        "enabled": True,
        "max_output_bytes": 32768,
        "noise_removal": True,
        "path_filtering": True,
        "path_filter_mode": "summary",
        "deduplication": True,
        "truncation": True,
        "trim_whitespace": True,
        "extra_boilerplate": [],
        "extra_filtered_dirs": [],
    },
    "router": {
        "decision_cache_ttl_secs": 300,
        "circuit_breaker_threshold": 0.2,
        "circuit_breaker_window": 10,
        "circuit_breaker_cooldown_secs": 600,
    },
    "passthrough": {"commands": []},
    "logging": {"enabled": True, "level": "info"},
    "optimizers": {
        "git": {
            "log_max_entries": 50,
            "log_default_limit": 20,
            "log_line_max_chars": 120,
            "diff_max_hunk_lines": 15,
            "diff_max_total_lines": 200,
            "branch_max_local": 20,
            "branch_max_remote": 10,
        },
        "file": {
            "ls_max_entries": 50,
            "ls_max_items": 60,
            "find_max_results": 40,
            "cat_max_lines": 100,
            "cat_head_lines": 60,
            "cat_tail_lines": 30,
            "wc_max_lines": 30,
            "tree_max_lines": 60,
        },
        "build": {
            "test_max_failure_lines": 80,
            "test_max_error_lines": 40,
            "test_max_warnings": 10,
            "build_max_error_lines": 60,
            "build_max_warnings": 10,
            "lint_max_issue_lines": 80,
        },
        "docker": {
            "ps_max_rows": 30,
            "images_max_rows": 30,
            "logs_max_tail": 30,
            "logs_max_errors": 20,
            "inspect_max_lines": 60,
            "resource_max_rows": 30,
        },
        "generic": {"min_size_bytes": 512, "max_lines": 200},
    },
}

# Profile overrides: (smart max latency, passthrough floor, smart threshold)
PROFILE_OVERRIDES: Dict[str, Dict[str, Dict[str, Any]]] = {
    "fast": {
        "smart_path": {"max_latency_ms": 1500},
        "output_thresholds": {"passthrough_below_bytes": 1024, "smart_path_above_bytes": 20480},
    },
    "balanced": {},
    "quality": {
        "smart_path": {"max_latency_ms": 5000},
        "output_thresholds": {"passthrough_below_bytes": 512, "smart_path_above_bytes": 4096},
    },
}


@dataclass
class GeneralConfig:
    enabled: bool = True
    mode: str = "hybrid"
    profile: str = "balanced"
    safe_mode: bool = False
    command_timeout_secs: float = 0


@dataclass
class FastPathConfig:
    enabled: bool = True
    optimizers: Dict[str, bool] = field(
        default_factory=lambda: dict(DEFAULT_CONFIG["fast_path"]["optimizers"])
    )


@dataclass
class SmartPathConfig:
    enabled: bool = False
    model: str = "llama3.2:1b"
    ollama_url: str = "http://localhost:11434"
    temperature: float = 0.0
    max_latency_ms: int = 30000
    cold_start_timeout_ms: int = 120000
    max_output_ratio: float = 0.9


@dataclass
class OutputThresholds:
    passthrough_below_bytes: int = 2048
    smart_path_above_bytes: int = 10240


@dataclass
class PreprocessingConfig:
    """Preprocessing pipeline settings.

    Attributes:
        enabled: Master switch for the pipeline.
        max_output_bytes: Truncation ceiling.
        noise_removal: Run the noise stage.
        path_filtering: Run the path filter stage.
        path_filter_mode: "summary" (marker per run) or "remove" (silent).
        deduplication: Run the deduplication stage.
        truncation: Run the truncation stage.
        trim_whitespace: Run the whitespace trim stage.
        extra_boilerplate: Additional boilerplate line prefixes.
        extra_filtered_dirs: Additional noise directory segments.
    """

    enabled: bool = True
    max_output_bytes: int = 32768
    noise_removal: bool = True
    path_filtering: bool = True
    path_filter_mode: str = "summary"
    deduplication: bool = True
    truncation: bool = True
    trim_whitespace: bool = True
    extra_boilerplate: List[str] = field(default_factory=list)
    extra_filtered_dirs: List[str] = field(default_factory=list)


@dataclass
class RouterConfig:
    decision_cache_ttl_secs: int = 300
    circuit_breaker_threshold: float = 0.2
    circuit_breaker_window: int = 10
    circuit_breaker_cooldown_secs: int = 600


@dataclass
class PassthroughConfig:
    commands: List[str] = field(default_factory=list)


@dataclass
class LoggingConfig:
    enabled: bool = True
    level: str = "info"


def _build_section(cls, data: Optional[Dict[str, Any]]):
    """Instantiate a section dataclass from a dict, ignoring unknown keys."""
    known = {f.name for f in fields(cls)}
    values = {k: v for k, v in (data or {}).items() if k in known}
    return cls(**values)


@dataclass
class TerseConfig:
    """Effective configuration.

    Attributes:
        general: Master switch, mode, profile and safe mode.
        fast_path: Rule-based optimizer settings.
        smart_path: Local LLM settings.
        output_thresholds: Size thresholds for routing.
        preprocessing: Preprocessing pipeline settings.
        router: Decision cache and circuit breaker tuning.
        passthrough: Extra never-optimize commands.
        logging: Diagnostic log settings.
        optimizers: Per-optimizer limits keyed by optimizer name.
    """

    general: GeneralConfig = field(default_factory=GeneralConfig)
    fast_path: FastPathConfig = field(default_factory=FastPathConfig)
    smart_path: SmartPathConfig = field(default_factory=SmartPathConfig)
    output_thresholds: OutputThresholds = field(default_factory=OutputThresholds)
    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    passthrough: PassthroughConfig = field(default_factory=PassthroughConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    optimizers: Dict[str, Dict[str, Any]] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_CONFIG["optimizers"])
    )

    @property
    def fast_allowed_by_mode(self) -> bool:
        return self.general.mode in ("hybrid", "fast-only")

    @property
    def smart_allowed_by_mode(self) -> bool:
        return self.general.mode in ("hybrid", "smart-only")

    @property
    def optimization_enabled(self) -> bool:
        """False when disabled, in safe mode, or in passthrough mode."""
        return (
            self.general.enabled
            and not self.general.safe_mode
            and self.general.mode != "passthrough"
        )

    def optimizer_limits(self, name: str) -> Dict[str, Any]:
        return dict(self.optimizers.get(name, {}))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TerseConfig":
        """Create from a (possibly partial) dictionary.

        Args:
            data: Nested dictionary, e.g. parsed TOML.
                Values of the wrong type are coerced or dropped.

        Returns:
            TerseConfig with defaults for anything missing.
        """
        merged = _deep_merge(copy.deepcopy(DEFAULT_CONFIG), _checked(data or {}, DEFAULT_CONFIG))
        return cls(
            general=_build_section(GeneralConfig, merged["general"]),
            fast_path=_build_section(FastPathConfig, merged["fast_path"]),
            smart_path=_build_section(SmartPathConfig, merged["smart_path"]),
            output_thresholds=_build_section(OutputThresholds, merged["output_thresholds"]),
            preprocessing=_build_section(PreprocessingConfig, merged["preprocessing"]),
            router=_build_section(RouterConfig, merged["router"]),
            passthrough=_build_section(PassthroughConfig, merged["passthrough"]),
            logging=_build_section(LoggingConfig, merged["logging"]),
            optimizers=merged["optimizers"],
        )


def terse_home() -> Path:
    """Directory holding config, state, logs and analytics."""
    override = os.environ.get("TERSE_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".terse"


def global_config_path() -> Path:
    return terse_home() / "config.toml"


def project_config_path(project_dir: Optional[str] = None) -> Path:
    return Path(project_dir or os.getcwd()) / ".terse.toml"


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Merge overlay into base per key (nested tables merged, not replaced)."""
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _read_toml(path: Path) -> Dict[str, Any]:
    """Read a TOML file; missing or malformed files yield an empty dict."""
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = toml.load(f)
    except (toml.TomlDecodeError, OSError, UnicodeDecodeError) as e:
        logger.warning("ignoring unreadable config %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in _TRUTHY


def _normalize_choice(value: str) -> str:
    return value.strip().lower().replace("_", "-")


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    env = os.environ

    if "TERSE_ENABLED" in env:
        data["general"]["enabled"] = _is_truthy(env["TERSE_ENABLED"])
    if "TERSE_MODE" in env:
        mode = _normalize_choice(env["TERSE_MODE"])
        if mode in MODES:
            data["general"]["mode"] = mode
        else:
            logger.warning("ignoring invalid TERSE_MODE=%r", env["TERSE_MODE"])
    if "TERSE_PROFILE" in env:
        profile = _normalize_choice(env["TERSE_PROFILE"])
        if profile in PROFILES:
            data["general"]["profile"] = profile
        else:
            logger.warning("ignoring invalid TERSE_PROFILE=%r", env["TERSE_PROFILE"])
    if "TERSE_SAFE_MODE" in env:
        data["general"]["safe_mode"] = _is_truthy(env["TERSE_SAFE_MODE"])
    if "TERSE_SMART_PATH" in env:
        data["smart_path"]["enabled"] = _is_truthy(env["TERSE_SMART_PATH"])
    if env.get("TERSE_SMART_PATH_MODEL"):
        data["smart_path"]["model"] = env["TERSE_SMART_PATH_MODEL"]
    if env.get("TERSE_SMART_PATH_URL"):
        data["smart_path"]["ollama_url"] = env["TERSE_SMART_PATH_URL"]
    if "TERSE_SMART_PATH_TIMEOUT_MS" in env:
        try:
            data["smart_path"]["max_latency_ms"] = int(env["TERSE_SMART_PATH_TIMEOUT_MS"])
        except ValueError:
            logger.warning(
                "ignoring invalid TERSE_SMART_PATH_TIMEOUT_MS=%r",
                env["TERSE_SMART_PATH_TIMEOUT_MS"],
            )


def load_config(project_dir: Optional[str] = None) -> TerseConfig:
    """Load the effective configuration.

    Args:
        project_dir: Directory searched for `.terse.toml` (default: cwd).

    Returns:
        TerseConfig with all layers applied.
    """
    data = copy.deepcopy(DEFAULT_CONFIG)
    _deep_merge(data, _checked(_read_toml(global_config_path()), DEFAULT_CONFIG))
    _deep_merge(data, _checked(_read_toml(project_config_path(project_dir)), DEFAULT_CONFIG))
    _apply_env_overrides(data)

    profile = _normalize_choice(str(data["general"].get("profile", "balanced")))
    if profile not in PROFILES:
        logger.warning("unknown profile %r, using balanced", profile)
        profile = "balanced"
    data["general"]["profile"] = profile
    _deep_merge(data, copy.deepcopy(PROFILE_OVERRIDES[profile]))

    return TerseConfig.from_dict(data)


def _write_toml(path: Path, data: Dict[str, Any]) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            toml.dump(data, f)
    except OSError as e:
        raise ConfigError(f"Cannot write {path}: {e}") from e
    return path


def init_config(force: bool = False) -> Path:
    """Write the default configuration to the global config file.

    Args:
        force: Overwrite an existing file.

    Returns:
        Path of the written file.

    Raises:
        ConfigError: If the file exists and force is False, or on write errors.
    """
    path = global_config_path()
    if path.exists() and not force:
        raise ConfigError(f"{path} already exists (use --force to overwrite)")
    return _write_toml(path, DEFAULT_CONFIG)


def reset_config() -> Path:
    """Overwrite the global config file with defaults."""
    return _write_toml(global_config_path(), DEFAULT_CONFIG)


def _parse_value(key: str, raw: str, default: Any) -> Any:
    """Parse a raw string into the type of the default value."""
    text = raw.strip()

    if isinstance(default, bool):
        lowered = text.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        raise ConfigError(f"Invalid boolean for {key}: {raw!r}")

    if isinstance(default, int):
        try:
            return int(text)
        except ValueError:
            raise ConfigError(f"Invalid integer for {key}: {raw!r}") from None

    if isinstance(default, float):
        try:
            return float(text)
        except ValueError:
            raise ConfigError(f"Invalid number for {key}: {raw!r}") from None

    if isinstance(default, list):
        return [item.strip() for item in text.split(",") if item.strip()]

    if key == "general.mode":
        value = _normalize_choice(text)
        if value not in MODES:
            raise ConfigError(f"Invalid mode {raw!r} (choose from {', '.join(MODES)})")
        return value
    if key == "general.profile":
        value = _normalize_choice(text)
        if value not in PROFILES:
            raise ConfigError(f"Invalid profile {raw!r} (choose from {', '.join(PROFILES)})")
        return value
    if key == "preprocessing.path_filter_mode" and text not in ("summary", "remove"):
        raise ConfigError(f"Invalid path filter mode {raw!r} (summary or remove)")

    return text


def _coerce_value(key: str, value: Any, default: Any) -> Any:
    """Bring a file value to the type of its default.

    Raises:
        ConfigError: If the value cannot be read as that type.
    """
    if isinstance(value, str):
        return _parse_value(key, value, default)
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
    elif isinstance(default, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    elif isinstance(default, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif isinstance(default, list):
        if isinstance(value, list) and all(isinstance(item, str) for item in value):
            return value
    raise ConfigError(f"Invalid value for {key}: {value!r} (expected {type(default).__name__})")


def _checked(data: Dict[str, Any], defaults: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Copy of a config layer with values coerced to their defaults' types.

    Values that cannot be coerced are dropped with a warning so the lower
    layer (or the built-in default) stays in effect. Keys without a default
    are kept as they are.
    """
    result: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if key not in defaults:
            result[key] = value
            continue
        default = defaults[key]
        if isinstance(default, dict):
            if isinstance(value, dict):
                result[key] = _checked(value, default, f"{dotted}.")
            else:
                logger.warning("ignoring %s: expected a table, got %r", dotted, value)
            continue
        try:
            result[key] = _coerce_value(dotted, value, default)
        except ConfigError as e:
            logger.warning("ignoring config value: %s", e)
    return result


def set_config_value(key: str, value: str) -> Any:
    """Set a dotted key in the global config file.

    Args:
        key: Dotted key such as `smart_path.enabled`.
        value: Raw value, parsed according to the key's default type.

    Returns:
        The parsed value that was written.

    Raises:
        ConfigError: If the key is unknown or the value does not parse.

    Example:
        >>> set_config_value("general.mode", "fast-only")
        'fast-only'
    """
    parts = key.split(".")
    default: Any = DEFAULT_CONFIG
    for part in parts:
        if not isinstance(default, dict) or part not in default:
            raise ConfigError(f"Unknown config key: {key}")
        default = default[part]
    if isinstance(default, dict):
        raise ConfigError(f"{key} is a section, not a value")

    parsed = _parse_value(key, value, default)

    path = global_config_path()
    data = _read_toml(path)
    node = data
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = parsed

    _write_toml(path, data)
    return parsed


def render_config(config: TerseConfig, fmt: str = "toml") -> str:
    """Render a configuration as TOML, JSON or YAML."""
    data = config.to_dict()
    if fmt == "toml":
        return toml.dumps(data)
    if fmt == "json":
        return json.dumps(data, indent=2)
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
    raise ConfigError(f"Unknown format: {fmt}")
