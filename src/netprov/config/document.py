"""Immutable configuration documents with pure merge and substitution.

A ConfigDocument is a snapshot of a nested dict/list tree. Every mutating
operation returns a new document; the original is never changed. Leaves are
shared rather than copied so embedded DeferredValues keep their identity.

Paths are dotted strings (``"accounts.activator.key"``) or tuples; numeric
segments index into lists (``"status.loadBalancer.ingress.0.ip"``).
"""

import re
from collections.abc import Mapping
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple, Union

from netprov.core.errors import ConfigurationError

Path = Union[str, Sequence[Union[str, int]]]

_MISSING = object()
_VARIABLE = re.compile(r"\$\{(\w+)\}")


def split_path(path: Path) -> Tuple[Union[str, int], ...]:
    """Normalize a dotted path or sequence into a tuple of segments."""
    if isinstance(path, str):
        if not path:
            return ()
        return tuple(int(p) if p.isdigit() else p for p in path.split("."))
    return tuple(path)


def copy_tree(value: Any) -> Any:
    """Copy dict/list containers, keeping leaf objects as-is."""
    if isinstance(value, Mapping):
        return {k: copy_tree(v) for k, v in value.items()}
    if isinstance(value, list):
        return [copy_tree(v) for v in value]
    return value


def get_path(data: Any, path: Path, default: Any = _MISSING) -> Any:
    """Read a value at ``path``; raise KeyError if absent and no default given."""
    current = data
    for segment in split_path(path):
        try:
            if isinstance(current, list):
                current = current[int(segment)]
            else:
                current = current[segment]
        except (KeyError, IndexError, TypeError, ValueError):
            if default is _MISSING:
                raise KeyError(".".join(str(s) for s in split_path(path))) from None
            return default
    return current


def set_path(data: Dict[str, Any], path: Path, value: Any, *, create: bool = False) -> Dict[str, Any]:
    """Return a copy of ``data`` with ``value`` stored at ``path``.

    Intermediate mappings must already exist unless ``create`` is set.
    """
    segments = split_path(path)
    if not segments:
        raise ConfigurationError("Empty configuration path")

    result = copy_tree(data)
    current: Any = result
    for depth, segment in enumerate(segments[:-1]):
        try:
            child = current[segment] if not isinstance(current, list) else current[int(segment)]
        except (KeyError, IndexError, ValueError):
            if not create:
                missing = ".".join(str(s) for s in segments[: depth + 1])
                raise ConfigurationError(
                    f"Template field '{missing}' is missing", {"path": missing}
                ) from None
            child = {}
            current[segment] = child
        if not isinstance(child, (dict, list)):
            partial = ".".join(str(s) for s in segments[: depth + 1])
            raise ConfigurationError(
                f"Template field '{partial}' is not a mapping", {"path": partial}
            )
        current = child

    last = segments[-1]
    if isinstance(current, list):
        current[int(last)] = value
    else:
        current[last] = value
    return result


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep merge two mappings (override wins) into a new dict."""
    result = copy_tree(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], Mapping) and isinstance(value, Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy_tree(value)
    return result


def substitute_variables(value: Any, variables: Mapping[str, str]) -> Any:
    """Recursively replace ``${name}`` placeholders in strings.

    Unknown placeholders are left untouched.

    Example:
        >>> substitute_variables({"rpc": "https://rpc.${domain}"}, {"domain": "net.example"})
        {'rpc': 'https://rpc.net.example'}
    """
    if isinstance(value, str):
        return _VARIABLE.sub(lambda m: str(variables.get(m.group(1), m.group(0))), value)
    if isinstance(value, Mapping):
        return {k: substitute_variables(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_variables(v, variables) for v in value]
    return value


class ConfigDocument(Mapping):
    """Read-only snapshot of a template document."""

    def __init__(self, data: Optional[Mapping[str, Any]] = None, *, source: Optional[str] = None):
        if data is not None and not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Template {source or '<inline>'} must be a mapping, got {type(data).__name__}"
            )
        self._data: Dict[str, Any] = copy_tree(data or {})
        self.source = source

    def __getitem__(self, key: str) -> Any:
        return copy_tree(self._data[key])

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"ConfigDocument(source={self.source!r}, keys={list(self._data)})"

    def get(self, path: Path, default: Any = None) -> Any:  # type: ignore[override]
        return copy_tree(get_path(self._data, path, default))

    def has(self, path: Path) -> bool:
        return get_path(self._data, path, _MISSING) is not _MISSING

    def require(self, path: Path) -> Any:
        """Read a required field, raising ConfigurationError when absent."""
        value = get_path(self._data, path, _MISSING)
        if value is _MISSING:
            dotted = ".".join(str(s) for s in split_path(path))
            raise ConfigurationError(
                f"Required template field '{dotted}' is missing",
                {"path": dotted, "template": self.source},
            )
        return copy_tree(value)

    def with_value(self, path: Path, value: Any, *, create: bool = False) -> "ConfigDocument":
        return ConfigDocument(set_path(self._data, path, value, create=create), source=self.source)

    def with_values(self, values: Mapping[str, Any], *, create: bool = False) -> "ConfigDocument":
        data = self._data
        for path, value in values.items():
            data = set_path(data, path, value, create=create)
        return ConfigDocument(data, source=self.source)

    def merged(self, override: Mapping[str, Any]) -> "ConfigDocument":
        return ConfigDocument(deep_merge(self._data, override), source=self.source)

    def substituted(self, variables: Mapping[str, str]) -> "ConfigDocument":
        return ConfigDocument(substitute_variables(self._data, variables), source=self.source)

    def to_dict(self) -> Dict[str, Any]:
        return copy_tree(self._data)
