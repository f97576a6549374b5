"""YAML I/O and structured data helpers."""

import copy
import io
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from genoring.errors import ConfigurationError


logger = logging.getLogger(__name__)

VERSION_COMMENT_REGEX = re.compile(r"^#\s*v?(\d+)\.(\d+)", re.IGNORECASE)

# Variables resolved by the runtime itself, never substituted in fragments
RUNTIME_VARIABLES = ("GENORING_HOST", "GENORING_PORT")


def _yaml(typ: str = "rt") -> YAML:
    yaml = YAML(typ=typ)
    if typ == "rt":
        yaml.preserve_quotes = True
    yaml.default_flow_style = False
    yaml.width = 4096
    return yaml


def substitute_env(text: str, values: Dict[str, str], exclude: Iterable[str] = RUNTIME_VARIABLES) -> str:
    """Replace ``${VAR}`` and ``$VAR`` references by known values.

    Unknown variables are left untouched so the runtime can resolve them.
    """
    excluded = set(exclude)

    def _replace(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        if name in values and name not in excluded:
            return values[name]
        return match.group(0)

    return re.sub(r"\$\{(\w+)\}|\$(\w+)\b", _replace, text)


def read_yaml(path: Path, env: Optional[Dict[str, str]] = None, typ: str = "rt") -> Any:
    """Read and parse a YAML file, substituting environment references first.

    Descriptors are read with ``typ="base"`` so every scalar stays a string
    and versions such as ``1.10`` are not turned into floats.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to access '{path}': {e}") from e
    if env:
        text = substitute_env(text, env)
    try:
        return _yaml(typ).load(text)
    except YAMLError as e:
        raise ConfigurationError(f"Failed to load YAML file '{path}':\n{e}") from e


def dump_yaml(data: Any, header: Optional[str] = None) -> str:
    """Serialize data to a YAML string with an optional comment header."""
    stream = io.StringIO()
    if header:
        stream.write(header)
    _yaml().dump(to_plain(data), stream)
    return stream.getvalue()


def write_yaml(path: Path, data: Any, header: Optional[str] = None):
    """Write data to a YAML file, replacing it wholesale."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_yaml(data, header), encoding="utf-8")
    logger.debug(f"Wrote {path}")


def read_version_comment(path: Path) -> Optional[str]:
    """Return the ``MAJOR.MINOR`` version declared on a fragment's first line."""
    with open(path, encoding="utf-8") as handle:
        first_line = handle.readline()
    match = VERSION_COMMENT_REGEX.match(first_line.strip())
    if not match:
        return None
    return f"{match.group(1)}.{match.group(2)}"


def to_plain(data: Any) -> Any:
    """Convert round-trip containers into plain dicts, lists and scalars."""
    if isinstance(data, dict):
        return {str(key): to_plain(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [to_plain(value) for value in data]
    return data


def deep_copy(data: Any) -> Any:
    """Deep copy of a parsed structure."""
    return copy.deepcopy(data)


def override_data(source: Any, override: Any) -> Any:
    """Deep field replace.

    Maps are combined key by key; anything else is replaced by the override
    value. A ``None`` override value removes the key from the result.
    """
    if source is None:
        return deep_copy(override)
    if override is None:
        return None
    if isinstance(source, dict) and isinstance(override, dict):
        result = deep_copy(source)
        for key, value in override.items():
            if key in result:
                replaced = override_data(result[key], value)
                if replaced is None:
                    del result[key]
                else:
                    result[key] = replaced
            elif value is not None:
                result[key] = deep_copy(value)
        return result
    return deep_copy(override)


def merge_data(source: Any, merge: Any) -> Any:
    """Deep structural merge: maps combine keys and lists concatenate."""
    if source is None:
        return deep_copy(merge)
    if merge is None:
        return deep_copy(source)
    if isinstance(source, dict) and isinstance(merge, dict):
        result = deep_copy(source)
        for key, value in merge.items():
            if key in result:
                result[key] = merge_data(result[key], value)
            else:
                result[key] = deep_copy(value)
        return result
    if isinstance(source, list) and isinstance(merge, list):
        return deep_copy(source) + deep_copy(merge)
    return deep_copy(merge)
