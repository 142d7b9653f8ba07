from __future__ import annotations
import json
import logging
import os
from typing import Any, Dict, Tuple

logger = logging.getLogger(__name__)


DEFAULTS: Dict[str, Any] = {
    "simulation": {
        "tick_seconds": 2.0,              # wall-clock seconds per simulated month
        "message_feed_capacity": 50,      # newest-first narrative feed length
        "emotion_history_capacity": 30,   # points kept for the emotion chart
        "months_per_quarter": 3
    },
    "probes": {
        "amplification_bonus": 1.25,      # multiplier applied to amplified probes
        "variance_min": 0.8,              # per-tick noise band on probe effects
        "variance_max": 1.2,
        "default_lag_min": 3,             # used when a probe has no lag window
        "default_lag_max": 6
    },
    "fragile": {
        "success_gain_probability": 0.3,  # chance of +1 per domain on a good tick
        "failure_severe_probability": 0.5,  # chance of -2 (else -1) on a bad tick
        "risk_exposure_bonus": 0.5        # extra share of a fresh risk's modifier
    },
    "export": {
        "version": "2.0",
        "directory": "exports"
    },
    "logging": {
        "level": "INFO"
    }
}


def settings_path() -> str:
    return os.path.join(os.path.dirname(__file__), "settings.json")


def load_settings() -> Dict[str, Any]:
    path = settings_path()
    if not os.path.exists(path):
        return json.loads(json.dumps(DEFAULTS))
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("Could not read %s (%s); using defaults", path, exc)
        return json.loads(json.dumps(DEFAULTS))
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a JSON object", path)
        return json.loads(json.dumps(DEFAULTS))
    # Merge with defaults to add new keys safely
    merged = json.loads(json.dumps(DEFAULTS))
    _deep_update(merged, data)
    return merged


def save_settings(data: Dict[str, Any]) -> None:
    # Merge into defaults then persist (keeps future-proof keys)
    merged = json.loads(json.dumps(DEFAULTS))
    _deep_update(merged, data)
    path = settings_path()
    with open(path, "w", encoding="utf-8") as f:
        json.dump(merged, f, indent=2)


def reset_to_defaults() -> Dict[str, Any]:
    save_settings(DEFAULTS)
    return json.loads(json.dumps(DEFAULTS))


def lag_window(settings: Dict[str, Any]) -> Tuple[int, int]:
    """Fallback (min, max) lag for probes whose record has no lag window."""
    probes = settings.get("probes", {})
    return int(probes.get("default_lag_min", 3)), int(probes.get("default_lag_max", 6))


def configure_logging(settings: Dict[str, Any]) -> None:
    level_name = str(settings.get("logging", {}).get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("sandbox").setLevel(level)


def _deep_update(base: Dict[str, Any], updates: Dict[str, Any]) -> None:
    for k, v in updates.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_update(base[k], v)
        else:
            base[k] = v
