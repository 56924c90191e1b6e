import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

CONFIG_PATH = Path(__file__).with_name("bridge_config.json")
CONFIG_ENV = "BRIDGE_CONFIG"

DEFAULT_CONFIG: Dict[str, Any] = {
    "verbose": True,
    "log_file": "logs/bridge_debug.log",
    "auth_token": "",
    "event_format": "records",
    "stream": {
        "emit_status_events": False,
        "stop_on_detach": False,
    },
    "placement": {
        "placement_timeout_s": 5.0,
        "auto_place_on_first_surface": False,
    },
    "simulation": {
        "sample_interval_s": 1.0,
        "heart_rate_range": [60.0, 85.0],
        "hrv_range": [40.0, 65.0],
        "authorization": "grant",
        "authorization_delay_s": 0.2,
        "fail_after_ticks": None,
        "surface_interval_s": 2.0,
        "max_surfaces": 3,
        "surface_lifetime_s": None,
        "anchor_delay_s": 0.05,
        "seed": None,
    },
    "metrics": {
        "interval_s": 10.0,
        "logger_config": "metrics/logger_config.json",
    },
    "command_aliases": {
        "startHealthStream": "start_stream",
        "stopHealthStream": "stop_stream",
        "launchAR": "reset_placement",
    },
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_bridge_config(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """Load the bridge configuration from JSON, layered over the defaults"""
    config_path = Path(path or os.environ.get(CONFIG_ENV) or CONFIG_PATH)
    if not config_path.exists():
        if path is not None:
            raise FileNotFoundError(f"Bridge config not found: {config_path}")
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(config_path) as f:
        try:
            overrides = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON format in {config_path}: {e}")
    return _merge(DEFAULT_CONFIG, overrides)


def configure_logging(config: Dict[str, Any]) -> logging.Logger:
    """Set up the debug log file and the console logger used by the bridge"""
    # Only configure basic logging if no handlers are already configured
    if not logging.getLogger().handlers and config.get("log_file"):
        Path(config["log_file"]).parent.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(
            filename=config["log_file"],
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )

    logger = logging.getLogger("bridge")
    if config.get("verbose", True):
        logger.setLevel(logging.INFO)
        # Add console handler for verbose output
        if not logger.handlers:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(logging.Formatter("%(message)s"))
            logger.addHandler(console_handler)
    else:
        logger.setLevel(logging.WARNING)
    return logger
