"""
ConfigManager: dot-notation access to tunable game configuration.

Purpose
-------
- Provide hierarchical, dot-notation access to game tunables and reference
  data (encounters, loot tables, role archetypes).
- Back configuration with YAML files under `config/`, deep-merged into a
  single tree.
- Allow runtime overrides for balance changes and tests without touching disk.

Responsibilities
----------------
- Discover and merge every YAML file under `Config.CONFIG_DIR`.
- Serve reads from an in-memory cache with fallback to the YAML defaults.
- Apply runtime overrides via `set()` and drop them via `reset()`.
- Track read/write metrics for infra dashboards.

Non-Responsibilities
--------------------
- Environment-driven infrastructure settings (see `Config`).
- Validating the game meaning of values (the catalog validates its own data).

Key Design Decisions
--------------------
- YAML is the single source for defaults; overrides live only in memory.
- Lazy bootstrap: the first `get()` loads YAML if `initialize()` was never
  called, and logs a warning so the omission is visible.
- Singleton via class methods, same as `Config`.
"""

from __future__ import annotations

import copy
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, MutableMapping, Optional

import yaml

from raidforge.core.config.config import Config
from raidforge.core.exceptions import ConfigurationError
from raidforge.core.logging.logger import get_logger

logger = get_logger(__name__)

_MISSING = object()


@dataclass(slots=True)
class ConfigMetrics:
    """Counters for ConfigManager observability."""

    gets: int = 0
    sets: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    fallback_to_defaults: int = 0
    reloads: int = 0
    errors: int = 0
    total_get_time_ms: float = 0.0

    def snapshot(self) -> Dict[str, Any]:
        data = asdict(self)
        data["cache_hit_rate"] = (
            round(self.cache_hits / self.gets * 100, 2) if self.gets else 0.0
        )
        data["avg_get_time_ms"] = (
            round(self.total_get_time_ms / self.gets, 4) if self.gets else 0.0
        )
        return data


class ConfigManager:
    """
    YAML-backed game configuration with runtime overrides.

    Usage
    -----
    >>> ConfigManager.initialize()
    >>> ttl = ConfigManager.get("lifecycle.instance_ttl_seconds", 1800)
    >>> ConfigManager.set("loot.unique_drop_chance", 0.0)
    """

    # Materialized configuration (defaults + overrides).
    _cache: Dict[str, Any] = {}

    # YAML defaults as loaded from disk.
    _defaults: Dict[str, Any] = {}

    _initialized: bool = False
    _config_dir: Optional[Path] = None
    _metrics: ConfigMetrics = ConfigMetrics()

    # =========================================================================
    # YAML LOADING
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: MutableMapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)  # type: ignore[index]
            else:
                target[key] = copy.deepcopy(value)

    @classmethod
    def _load_yaml_configs(cls, config_dir: Path) -> Dict[str, Any]:
        """
        Recursively load all YAML files under `config_dir` into one tree.

        Files are merged in sorted path order so the result does not depend on
        filesystem iteration order. A file that fails to parse is a
        configuration error, not a silent skip: the catalog cannot run on a
        partial encounter list.
        """
        merged: Dict[str, Any] = {}

        if not config_dir.exists():
            logger.warning(
                "Config directory not found; running without YAML defaults",
                extra={"config_dir": str(config_dir)},
            )
            return merged

        yaml_files = sorted(
            list(config_dir.rglob("*.yaml")) + list(config_dir.rglob("*.yml"))
        )

        for yaml_file in yaml_files:
            relative = str(yaml_file.relative_to(config_dir))
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                cls._metrics.errors += 1
                logger.error(
                    "Failed to load YAML config",
                    extra={
                        "file": relative,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                raise ConfigurationError(relative, f"unreadable YAML: {exc}") from exc

            if isinstance(data, dict):
                cls._deep_merge_dict(merged, data)
                logger.debug("Loaded YAML config", extra={"file": relative})
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={"file": relative, "root_type": type(data).__name__},
                )

        logger.info(
            "YAML configs loaded",
            extra={
                "config_dir": str(config_dir),
                "yaml_file_count": len(yaml_files),
                "top_level_keys": sorted(merged.keys()),
            },
        )
        return merged

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @classmethod
    def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """
        Load YAML defaults and reset the cache to them.

        Calling again reloads from disk and discards runtime overrides.
        """
        cls._config_dir = Path(config_dir) if config_dir else Config.CONFIG_DIR
        cls._defaults = cls._load_yaml_configs(cls._config_dir)
        cls._cache = copy.deepcopy(cls._defaults)
        cls._initialized = True
        cls._metrics.reloads += 1

    @classmethod
    def reset(cls) -> None:
        """Forget all loaded data and overrides. Intended for tests."""
        cls._cache = {}
        cls._defaults = {}
        cls._initialized = False
        cls._config_dir = None
        cls._metrics = ConfigMetrics()

    @classmethod
    def load_mapping(cls, data: Dict[str, Any]) -> None:
        """Replace the configuration with an in-memory tree (no disk access)."""
        cls._defaults = copy.deepcopy(data)
        cls._cache = copy.deepcopy(data)
        cls._initialized = True
        cls._metrics.reloads += 1

    # =========================================================================
    # READS
    # =========================================================================

    @staticmethod
    def _traverse(tree: Dict[str, Any], key: str) -> Any:
        value: Any = tree
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return _MISSING
            value = value[part]
        return value

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value by dot-notation path.

        Examples
        --------
        >>> ConfigManager.get("write_coalescer.max_batch_size", 20)
        20
        """
        start_time = time.perf_counter()
        cls._metrics.gets += 1

        if not cls._initialized:
            logger.warning(
                "ConfigManager accessed before explicit initialization; loading YAML"
            )
            cls.initialize()

        try:
            value = cls._traverse(cls._cache, key)
            if value is not _MISSING and value is not None:
                cls._metrics.cache_hits += 1
                return value

            cls._metrics.cache_misses += 1
            fallback = cls._traverse(cls._defaults, key)
            if fallback is not _MISSING and fallback is not None:
                cls._metrics.fallback_to_defaults += 1
                return fallback
            return default
        finally:
            cls._metrics.total_get_time_ms += (time.perf_counter() - start_time) * 1000

    @classmethod
    def get_section(cls, key: str) -> Dict[str, Any]:
        """Return a deep copy of a mapping section, or `{}` if absent."""
        value = cls.get(key, {})
        if not isinstance(value, dict):
            raise ConfigurationError(key, f"expected a mapping, got {type(value).__name__}")
        return copy.deepcopy(value)

    @classmethod
    def get_all_keys(cls) -> List[str]:
        """Return the top-level keys currently in cache."""
        return list(cls._cache.keys())

    # =========================================================================
    # WRITES
    # =========================================================================

    @classmethod
    def set(cls, key: str, value: Any) -> None:
        """
        Override a value at runtime by dot-notation path.

        Intermediate mappings are created as needed. Overrides survive until
        the next `initialize()` or `reset()`.
        """
        if not cls._initialized:
            cls.initialize()

        parts = key.split(".")
        node: Dict[str, Any] = cls._cache
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
        cls._metrics.sets += 1

        logger.info(
            "Configuration override applied",
            extra={"config_key": key, "value_type": type(value).__name__},
        )

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================

    @classmethod
    def get_metrics(cls) -> Dict[str, Any]:
        return {
            **cls._metrics.snapshot(),
            "initialized": cls._initialized,
            "cached_configs": len(cls._cache),
            "config_dir": str(cls._config_dir) if cls._config_dir else None,
        }
