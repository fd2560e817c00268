"""
Configuration loading for the targeted FGSM demo.

Values come from a YAML file merged over ``DEFAULT_CONFIG``. The file path is
taken from the caller, else ``$FGSM_DEMO_CONFIG``, else ``configs/config.yaml``
if it exists.
"""

import copy
import os
from pathlib import Path

import yaml

CONFIG_ENV_VAR = "FGSM_DEMO_CONFIG"
DEFAULT_CONFIG_PATH = Path("configs/config.yaml")

# 883 is the ImageNet index for "vase"
DEFAULT_TARGET_CLASS: int = 883
DEFAULT_EPSILON: float = 5.0

DEFAULT_CONFIG: dict = {
    "model": {"architecture": "mobilenet_v2", "weights": "DEFAULT", "device": "auto"},
    "attack": {"target_class": DEFAULT_TARGET_CLASS, "epsilon": DEFAULT_EPSILON},
    "classify": {"top_k": 3},
    "image": {"max_side": 512},
    "evaluation": {"epsilons": [0.0, 1.0, 2.0, 5.0, 10.0]},
    "mlflow": {"tracking_uri": "./mlruns", "experiment_name": "targeted-fgsm"},
}


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path | None = None) -> dict:
    """Read the YAML config and fill in defaults for missing keys."""
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return copy.deepcopy(DEFAULT_CONFIG)
        path = DEFAULT_CONFIG_PATH

    with open(path) as f:
        user_config = yaml.safe_load(f) or {}
    if not isinstance(user_config, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return _merge(DEFAULT_CONFIG, user_config)
