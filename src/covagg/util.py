# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

"""
util

"""

from typing import List, Dict, Iterable, Optional
import sys
import os
import re
from pathlib import Path

from natsort import natsorted

# If set, suppress information messages
quiet: bool = False


def sort_unique(iterable: Iterable) -> List:
    """Return list in numerically ascending order and without
    duplicate entries."""
    unique = set(iterable)
    return natsorted(unique)


def sort_unique_lex(iterable: Iterable) -> List:
    """Return list in lexically ascending order and without
    duplicate entries."""
    unique = set(iterable)
    return sorted(unique)


def read_covagg_config_file(config_file: Optional[Path] = None) -> Optional[Dict[str, str]]:
    """Read covagg configuration file"""
    if config_file is not None:
        return read_config(Path(config_file))
    HOME = os.environ.get("HOME")
    if HOME is not None:
        covaggrc = Path(HOME)/".covaggrc"
        if os.access(covaggrc, os.R_OK):
            return read_config(covaggrc)
    covaggrc = Path("/etc/covaggrc")
    if os.access(covaggrc, os.R_OK):
        return read_config(covaggrc)
    covaggrc = Path("/usr/local/etc/covaggrc")
    if os.access(covaggrc, os.R_OK):
        return read_config(covaggrc)
    return None


def read_config(filename: Path) -> Optional[Dict[str, str]]:
    """Read configuration file FILENAME and return a dict
    containing all valid key=value pairs found.
    """
    try:
        file = filename.open("rt")
    except OSError:
        warn(f"WARNING: cannot read configuration file {filename}")
        return None

    result = {}
    with file:
        for idx, line in enumerate(file):
            line = line.rstrip("\n")
            # Skip comments
            line = re.sub(r"#.*", "", line)
            # Remove leading and trailing blanks
            line = line.strip()
            if not line:
                continue
            key, _, val = (part.strip() for part in line.partition("="))
            if key and val:
                result[key] = val
            else:
                warn(f"WARNING: malformed statement in line {idx + 1} "
                     f"of configuration file {filename}")

    return result


def strip_spaces_in_options(opt_dict: Dict[str, str]) -> Dict[str, str]:
    """Remove spaces around options"""
    return {key.strip(): value.strip() for key, value in opt_dict.items()}


def parse_rc_options(rc_list: Optional[List[str]]) -> Dict[str, str]:
    """Convert a list of 'key=value' strings as passed with --rc to a dict."""
    result: Dict[str, str] = {}
    for item in rc_list or []:
        key, sep, value = item.partition("=")
        if not sep:
            die(f"ERROR: malformed --rc option: {item}")
        result[key] = value
    return strip_spaces_in_options(result)


def transform_pattern(pattern: str) -> str:
    """Transform shell wildcard expression to equivalent regular expression.
    Return transformed pattern."""
    result = []
    for char in pattern:
        if char == "*":
            result.append("(.*)")
        elif char == "?":
            result.append("(.)")
        else:
            result.append(re.escape(char))
    return "".join(result)


def get_common_prefix(filenames: Iterable[str]) -> str:
    """Return the longest directory prefix shared by all FILENAMES."""
    dirs = [os.path.dirname(filename) for filename in filenames]
    if not dirs:
        return ""
    try:
        return os.path.commonpath(dirs)
    except ValueError:
        # Mix of absolute and relative paths
        return ""


def info(message: str, *, end: str = "\n"):
    """Write message to stderr only when quiet mode is not set."""
    if quiet: return
    # Print info string
    print(message, end=end, file=sys.stderr)


def warn(message: str):
    """ """
    import warnings
    warnings.warn(message, stacklevel=2)


def die(message: str, *, end: str = "\n"):
    """ """
    sys.exit(message + end)
