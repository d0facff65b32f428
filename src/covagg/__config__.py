# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

from typing import Dict, Optional
import argparse
from pathlib import Path


def make_config(cfg_name: str) -> Dict[str, object]:
    from runpy import run_path
    cfg_path = Path(__file__).parent/cfg_name
    return ({key: val for key, val in run_path(str(cfg_path)).items()
             if not key.startswith("__")} if cfg_path.is_file() else {})


defaults: Dict[str, object] = make_config("covagg.cfg")


def convert_value(key: str, value: str) -> object:
    """Convert the string VALUE of configuration KEY to the type of
    its default value."""
    default = defaults[key]
    if isinstance(default, bool):
        if value.lower() in ("1", "yes", "true", "on"):
            return True
        if value.lower() in ("0", "no", "false", "off"):
            return False
        raise ValueError(f"invalid boolean value for {key}: {value}")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


def load_options(config: Optional[Dict[str, str]] = None,
                 rc: Optional[Dict[str, str]] = None) -> argparse.Namespace:
    """Return the effective options: defaults, overridden by the
    configuration file contents CONFIG, overridden by --rc values RC.

    Keys may be given with or without the 'covagg_' prefix.
    """
    from .util import warn

    options = dict(defaults)
    for source in (config or {}, rc or {}):
        for key, value in source.items():
            name = key[len("covagg_"):] if key.startswith("covagg_") else key
            if name not in defaults:
                warn(f"WARNING: unknown configuration key: {key}")
                continue
            try:
                options[name] = convert_value(name, value)
            except ValueError as exc:
                warn(f"WARNING: {exc}")

    return argparse.Namespace(**options)
