import json
import os
from pathlib import Path
from typing import Any, Dict, List

from common.errors import ConfigError
from common.logging.logger import CONFIG_ENV_VAR, get_logger

logger = get_logger("config")

# Centralized default values for all config keys used across the codebase.
# Each entry: (type, default_value)
# Types: str, int, float, bool, None (any)
CONFIG_SCHEMA: Dict[str, tuple] = {
    # Paths
    "paths.logs_dir":                           (str,   "logs"),

    # Database
    "database.sqlite_path":                     (str,   "data/aesthetic_rank.db"),
    "database.busy_timeout_seconds":            (float, 5.0),
    "database.claim_lock_timeout_seconds":      (float, 0.05),

    # Scoring policy (see ranking.policy.ScoringPolicy)
    "scoring.version":                          (str,   "v2-incremental"),
    "scoring.default_rating_mean":              (float, 1200.0),
    "scoring.default_rating_uncertainty":       (float, 350.0),
    "scoring.base_step":                        (float, 32.0),
    "scoring.boosted_weight":                   (float, 2.0),
    "scoring.uncertainty_floor":                (float, 50.0),
    "scoring.uncertainty_decay":                (float, 0.98),
    "scoring.uncertainty_drift":                (float, 0.0),
    "scoring.snapshot_rating_min":              (float, 0.0),
    "scoring.snapshot_rating_max":              (float, 4000.0),
    "scoring.rater_default_mean":               (float, 50.0),
    "scoring.rater_default_std":                (float, 15.0),
    "scoring.rater_std_floor":                  (float, 5.0),
    "scoring.z_clamp":                          (float, 2.5),
    "scoring.reliability_neutral":              (float, 1.0),
    "scoring.reliability_min":                  (float, 0.1),
    "scoring.reliability_max":                  (float, 2.0),
    "scoring.min_reliability_samples":          (int,   5),
    "scoring.rating_floor":                     (float, 800.0),
    "scoring.rating_ceiling":                   (float, 1600.0),
    "scoring.neutral_component":                (float, 50.0),
    "scoring.favorite_scale":                   (float, 3.0),
    "scoring.weight_rating":                    (float, 0.40),
    "scoring.weight_rating_signal":             (float, 0.30),
    "scoring.weight_favorite":                  (float, 0.30),
    "scoring.pairwise_evidence_weight":         (float, 1.0),
    "scoring.rating_evidence_weight":           (float, 1.5),
    "scoring.favorite_evidence_weight":         (float, 1.0),
    "scoring.confidence_scale":                 (float, 20.0),
    "scoring.min_publish_confidence":           (float, 40.0),
    "scoring.min_publish_delta":                (float, 0.5),

    # Workers
    "worker.count":                             (int,   2),
    "worker.batch_size":                        (int,   50),
    "worker.poll_interval_seconds":             (float, 1.0),
    "worker.max_retries":                       (int,   3),
    "worker.backoff_base_seconds":              (float, 0.05),
    "worker.recalibration_interval_seconds":    (float, 3600.0),

    # Reliability recalibration
    "recalibration.alpha":                      (float, 0.25),
    "recalibration.batch_size":                 (int,   1000),

    # Retention
    "retention.days_to_keep":                   (int,   90),

    # Monitor
    "monitor.max_dirty_backlog":                (int,   5000),
    "monitor.max_oldest_dirty_seconds":         (float, 600.0),
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class Config:
    """
    Process-wide settings loaded once from config.json.

    The file is read from $AESTHETIC_RANK_CONFIG when set, otherwise from the
    working directory. A missing file means "all schema defaults".
    """

    _instance = None
    _config: Dict[str, Any] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._load_config()
        return cls._instance

    def _load_config(self):
        config_path = Path(os.environ.get(CONFIG_ENV_VAR, "config.json"))
        if not config_path.exists():
            self._config = {}
            return

        with open(config_path, "r") as f:
            self._config = json.load(f)

        self._ensure_dirs()

    def _ensure_dirs(self):
        """Creates the database and log directories; unreachable ones are left to fail later."""
        targets = [Path(self.get("paths.logs_dir"))]
        sqlite_path = self.get("database.sqlite_path")
        if sqlite_path != ":memory:":
            targets.append(Path(sqlite_path).parent)
        for target in targets:
            try:
                target.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Could not create directory {target}: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Gets a config value by dot-separated key, e.g. ``scoring.base_step``.

        Lookup order: config.json, then the caller's *default*, then the
        schema default, then None. Falsy values from config.json (0, False,
        "") are returned as-is; only a missing key or null falls through.
        """
        value = self._get_raw(key)
        if value is not None:
            return value
        if default is not None:
            return default
        entry = CONFIG_SCHEMA.get(key)
        return entry[1] if entry is not None else None

    def section(self, key: str) -> Dict[str, Any]:
        """
        Effective values of every key under *key*.

        ``section("worker")`` -> ``{"count": 2, "batch_size": 50, ...}``
        """
        prefix = key + "."
        names = [name for name in CONFIG_SCHEMA if name.startswith(prefix)]
        raw = self._get_raw(key)
        if isinstance(raw, dict):
            names.extend(prefix + extra for extra in raw if prefix + extra not in CONFIG_SCHEMA)
        if not names:
            raise ConfigError(key, reason="section not found")
        return {name[len(prefix):]: self.get(name) for name in names}

    def validate(self) -> List[str]:
        """
        Type-checks config.json against CONFIG_SCHEMA.

        Returns (and logs) one warning per mismatch; never raises, since the
        file's values still win at lookup time. Integers are accepted where
        floats are expected, booleans are not.
        """
        warnings = []
        for key, (expected, _default) in CONFIG_SCHEMA.items():
            value = self._get_raw(key)
            if expected is None or value is None:
                continue
            if expected is float:
                ok = _is_number(value)
            elif expected is int:
                ok = isinstance(value, int) and not isinstance(value, bool)
            else:
                ok = isinstance(value, expected)
            if not ok:
                warnings.append(
                    f"Config '{key}': expected {expected.__name__}, "
                    f"got {type(value).__name__} ({value!r})"
                )
        for w in warnings:
            logger.warning(w)
        return warnings

    def _get_raw(self, key: str) -> Any:
        """Value from config.json only, no defaults."""
        node: Any = self._config
        for part in key.split("."):
            if not isinstance(node, dict):
                return None
            node = node.get(part)
            if node is None:
                return None
        return node

    def require(self, key: str) -> Any:
        """Returns a value that must be set explicitly in config.json."""
        value = self._get_raw(key)
        if value is None:
            logger.error(f"Missing required config key: {key}")
            raise ConfigError(key)
        return value


config = Config()
