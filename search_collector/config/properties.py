"""
Property bag loading for reader configuration.

Reader configuration is a flat mapping of string keys to string values. It can
be read from Java-style ``.properties`` files, YAML or JSON, layered with an
optional override file and ``key=value`` overrides given on the command line.
"""

import json
import logging
import os
import string
from collections import OrderedDict
from typing import Any, Dict, Iterable, Optional

import yaml

from ..core.exceptions import ConfigurationError

# Initialize logger
LOG = logging.getLogger(__name__)

RawConfig = Dict[str, str]

REDACTED = '***'


def normalize_key(key: str) -> str:
    """
    Lower-case the parameter name or group prefix of a key.

    Only the first dotted segment is normalized so mapping suffixes such as
    ``metric.QueryCount`` keep the case used for metric and tag names.
    """
    key = key.strip()
    head, sep, tail = key.partition('.')
    return head.lower() + sep + tail


def redact(key: str, value: str) -> str:
    """Return the value to show in diagnostics for a key."""
    return REDACTED if normalize_key(key) == 'password' else value


def quote_values(values: Iterable[Any]) -> str:
    """Render a list as the quoted, comma separated form used by ``param.N``."""
    return ','.join(f'"{value}"' for value in values)


def _flatten(data: Dict[str, Any], prefix: str = '') -> RawConfig:
    """Flatten nested YAML/JSON mappings into dotted keys."""
    result: RawConfig = OrderedDict()
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            result.update(_flatten(value, full_key))
        elif isinstance(value, (list, tuple)):
            result[full_key] = quote_values(value)
        elif isinstance(value, bool):
            result[full_key] = 'true' if value else 'false'
        elif value is None:
            result[full_key] = ''
        else:
            result[full_key] = str(value)
    return result


def _unescape(text: str) -> str:
    """Resolve the backslash escapes allowed in .properties keys and values.

    Raises:
        ConfigurationError: On a malformed ``\\uXXXX`` escape
    """
    escapes = {'t': '\t', 'n': '\n', 'r': '\r', 'f': '\f'}
    out = []
    index = 0
    while index < len(text):
        char = text[index]
        index += 1
        if char != '\\':
            out.append(char)
            continue
        nxt = text[index:index + 1]
        index += 1
        if nxt == 'u':
            digits = text[index:index + 4]
            if len(digits) != 4 or any(c not in string.hexdigits for c in digits):
                raise ConfigurationError("Malformed \\uxxxx encoding", context=text)
            out.append(chr(int(digits, 16)))
            index += 4
        else:
            out.append(escapes.get(nxt, nxt))
    return ''.join(out)


def parse_properties(text: str) -> RawConfig:
    """
    Parse the contents of a Java-style .properties file.

    Keys are separated from values by '=', ':' or whitespace. Supports ``#``
    and ``!`` comment lines, trailing-backslash line continuation and the
    ``\\uXXXX`` escape.

    Args:
        text: File contents

    Returns:
        Ordered mapping of keys to values

    Raises:
        ConfigurationError: On a malformed escape
    """
    result: RawConfig = OrderedDict()
    logical = ''

    for raw_line in text.splitlines():
        line = raw_line.lstrip()
        if not logical and (not line or line[0] in '#!'):
            continue

        # Odd number of trailing backslashes continues onto the next line
        trailing = len(line) - len(line.rstrip('\\'))
        if trailing % 2 == 1:
            logical += line[:-1]
            continue

        logical += line
        key, value = _split_property(logical)
        if key:
            result[_unescape(key)] = _unescape(value)
        logical = ''

    if logical:
        key, value = _split_property(logical)
        if key:
            result[_unescape(key)] = _unescape(value)

    return result


def _split_property(line: str):
    """Split a logical line into key and value.

    The key ends at the first unescaped '=', ':' or whitespace. Whitespace
    around the separator is skipped, and a single '=' or ':' following
    whitespace belongs to the separator rather than the value.
    """
    escaped = False
    end = len(line)
    for index, char in enumerate(line):
        if escaped:
            escaped = False
            continue
        if char == '\\':
            escaped = True
        elif char in '=:' or char.isspace():
            end = index
            break

    rest = line[end:].lstrip()
    if rest[:1] in ('=', ':'):
        rest = rest[1:]
    return line[:end].strip(), rest.strip()


def load_properties(path: str) -> RawConfig:
    """
    Load a property bag from a .properties, YAML or JSON file.

    Args:
        path: File to read

    Returns:
        Mapping of normalized keys to string values

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            lowered = path.lower()
            if lowered.endswith('.yaml') or lowered.endswith('.yml'):
                data = yaml.safe_load(f) or {}
                if not isinstance(data, dict):
                    raise ConfigurationError(f"Top level of {path} must be a mapping", context=path)
                props = _flatten(data)
            elif lowered.endswith('.json'):
                data = json.load(f)
                if not isinstance(data, dict):
                    raise ConfigurationError(f"Top level of {path} must be an object", context=path)
                props = _flatten(data)
            else:
                props = parse_properties(f.read())
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise ConfigurationError(f"Could not load configuration from {path}: {e}", context=path) from e

    LOG.info(f"Loaded {len(props)} configuration properties from {path}")
    return OrderedDict((normalize_key(k), v) for k, v in props.items())


def parse_overrides(overrides: Optional[Iterable[str]]) -> RawConfig:
    """Turn ``key=value`` strings into a property bag."""
    result: RawConfig = OrderedDict()
    for item in overrides or []:
        key, sep, value = item.partition('=')
        if not sep or not key.strip():
            raise ConfigurationError(f"Override must be in key=value form: {item!r}", context=item)
        result[normalize_key(key)] = value.strip()
    return result


def load_reader_properties(reader_type: str,
                           config_path: Optional[str] = None,
                           override_path: Optional[str] = None,
                           overrides: Optional[Iterable[str]] = None) -> RawConfig:
    """
    Build the property bag for a reader from all configuration layers.

    Layers are applied in order, later ones winning per key:
    the primary file, the override file, then command line overrides.
    File paths default to the ``<READER_TYPE>_CONFIGURATION`` and
    ``<READER_TYPE>_OVERRIDE_CONFIGURATION`` environment variables.

    Args:
        reader_type: Reader type name, e.g. SPLUNKNATIVE
        config_path: Primary configuration file
        override_path: Optional override file
        overrides: Optional ``key=value`` strings

    Returns:
        Merged property bag

    Raises:
        ConfigurationError: If the primary file is not given or unreadable
    """
    env_prefix = reader_type.upper()
    config_path = config_path or os.getenv(f"{env_prefix}_CONFIGURATION")
    override_path = override_path or os.getenv(f"{env_prefix}_OVERRIDE_CONFIGURATION")

    if not config_path:
        raise ConfigurationError(
            f"Could not load configuration. Please specify the configuration file location "
            f"using --config or the {env_prefix}_CONFIGURATION environment variable.",
            context=reader_type)

    props: RawConfig = OrderedDict()
    props.update(load_properties(config_path))

    if override_path:
        if os.path.exists(override_path):
            props.update(load_properties(override_path))
        else:
            LOG.debug(f"Override configuration not found, ignoring: {override_path}")

    for key, value in parse_overrides(overrides).items():
        LOG.info(f"Adding override key={key} value={redact(key, value)}")
        props[key] = value

    return props
