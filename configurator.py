"""
Config loading for the training scripts.

A config file is a plain Python file that defines a module-level ``config``
dict. Values can then be overridden on the command line:

    python train.py config/train_shakespeare_char.py --batch_size=32 --device=cpu

Override values are parsed as Python literals when possible (``--compile=False``,
``--betas=(0.9, 0.99)``) and kept as strings otherwise (``--device=cuda:1``).
"""

import ast
import importlib.util
import os
from typing import Any, Dict, List, Optional


def load_config(config_path: str) -> dict:
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")
    spec = importlib.util.spec_from_file_location("config_module", config_path)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    config = getattr(module, "config", None)
    if not isinstance(config, dict):
        raise ValueError(f"{config_path} must define a module-level `config` dict")
    return config


def parse_overrides(args: List[str]) -> Dict[str, Any]:
    """Parse ``--key=value`` tokens into a dict."""
    overrides = {}
    for arg in args:
        if not arg.startswith("--") or "=" not in arg:
            raise ValueError(f"Expected an override of the form --key=value, got: {arg!r}")
        key, val = arg[2:].split("=", 1)
        if not key:
            raise ValueError(f"Empty key in override: {arg!r}")
        try:
            overrides[key] = ast.literal_eval(val)
        except (SyntaxError, ValueError):
            overrides[key] = val
    return overrides


def build_config(
    defaults: Dict[str, Any],
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> dict:
    """Merge defaults <- config file <- CLI overrides."""
    cfg = dict(defaults)
    if config_path is not None:
        cfg.update(load_config(config_path))

    for key, val in (overrides or {}).items():
        if key not in cfg:
            raise ValueError(f"Unknown config key: {key}")
        current = cfg[key]
        if current is not None and val is not None and type(val) is not type(current):
            # allow --learning_rate=1 for a float field
            if isinstance(current, float) and isinstance(val, int) and not isinstance(val, bool):
                val = float(val)
            else:
                raise ValueError(
                    f"Override for {key} has type {type(val).__name__}, "
                    f"expected {type(current).__name__}"
                )
        print(f"Overriding: {key} = {val}")
        cfg[key] = val
    return cfg
