"""
Samflow Parameter Values

Closed tagged-variant value type used for step parameters and variables.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from samflow.errors import DecodingError


class ValueKind(str, Enum):
    """Kinds of parameter values."""
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    LIST = "list"
    MAP = "map"


@dataclass(frozen=True)
class ParameterValue:
    """
    A typed parameter value.

    Lists hold ParameterValues and maps are keyed by strings. Every
    constructor path checks the payload so an invalid shape can never be
    stored.
    """
    kind: ValueKind
    value: Any

    def __post_init__(self) -> None:
        expected = _PAYLOAD_TYPES[self.kind]
        ok = isinstance(self.value, expected)
        if self.kind in (ValueKind.INT, ValueKind.FLOAT) and isinstance(self.value, bool):
            ok = False
        if ok and self.kind == ValueKind.LIST:
            ok = all(isinstance(v, ParameterValue) for v in self.value)
        if ok and self.kind == ValueKind.MAP:
            ok = all(
                isinstance(k, str) and isinstance(v, ParameterValue)
                for k, v in self.value.items()
            )
        if not ok:
            raise DecodingError(f"Invalid payload for {self.kind.value}: {self.value!r}")

    # === Construction ===

    @classmethod
    def of(cls, obj: Any) -> "ParameterValue":
        """Wrap a plain Python value."""
        if isinstance(obj, ParameterValue):
            return obj
        # bool is a subclass of int, so it is checked first
        if isinstance(obj, bool):
            return cls(ValueKind.BOOL, obj)
        if isinstance(obj, int):
            return cls(ValueKind.INT, obj)
        if isinstance(obj, float):
            return cls(ValueKind.FLOAT, obj)
        if isinstance(obj, str):
            return cls(ValueKind.STRING, obj)
        if isinstance(obj, (list, tuple)):
            return cls(ValueKind.LIST, tuple(cls.of(v) for v in obj))
        if isinstance(obj, Mapping):
            items = {}
            for key, val in obj.items():
                if not isinstance(key, str):
                    raise DecodingError(f"Map keys must be strings, got {key!r}")
                items[key] = cls.of(val)
            return cls(ValueKind.MAP, _FrozenMap(items))
        raise DecodingError(f"Unsupported parameter value: {type(obj).__name__}")

    @classmethod
    def from_json(cls, data: Any) -> "ParameterValue":
        """Decode a JSON value. Unknown shapes fail explicitly."""
        if data is None:
            raise DecodingError("null is not a valid parameter value")
        return cls.of(data)

    # === Conversion ===

    def to_python(self) -> Any:
        """Unwrap into plain Python values."""
        if self.kind == ValueKind.LIST:
            return [v.to_python() for v in self.value]
        if self.kind == ValueKind.MAP:
            return {k: v.to_python() for k, v in self.value.items()}
        return self.value

    def to_json(self) -> Any:
        return self.to_python()

    def as_text(self) -> str:
        """Render for string interpolation."""
        if self.kind == ValueKind.STRING:
            return self.value
        if self.kind == ValueKind.BOOL:
            return "true" if self.value else "false"
        if self.kind in (ValueKind.INT, ValueKind.FLOAT):
            return str(self.value)
        return json.dumps(self.to_python())

    def as_number(self) -> Optional[Union[int, float]]:
        if self.kind in (ValueKind.INT, ValueKind.FLOAT):
            return self.value
        return None

    @property
    def is_numeric(self) -> bool:
        return self.kind in (ValueKind.INT, ValueKind.FLOAT)

    def get(self, key: str) -> Optional["ParameterValue"]:
        """Look up a key in a map value."""
        if self.kind != ValueKind.MAP:
            return None
        return self.value.get(key)

    def __str__(self) -> str:
        return self.as_text()


class _FrozenMap(dict):
    """Hashable read-only dict backing map values."""

    def __hash__(self) -> int:  # type: ignore[override]
        return hash(tuple(sorted(self.items(), key=lambda kv: kv[0])))

    def _readonly(self, *args: Any, **kwargs: Any) -> None:
        raise TypeError("ParameterValue maps are immutable")

    __setitem__ = _readonly
    __delitem__ = _readonly
    update = _readonly
    pop = _readonly
    popitem = _readonly
    clear = _readonly
    setdefault = _readonly


_PAYLOAD_TYPES = {
    ValueKind.BOOL: bool,
    ValueKind.INT: int,
    ValueKind.FLOAT: float,
    ValueKind.STRING: str,
    ValueKind.LIST: tuple,
    ValueKind.MAP: dict,
}


def coerce_parameters(params: Optional[Mapping[str, Any]]) -> Dict[str, ParameterValue]:
    """Convert a mapping of plain values into ParameterValues."""
    if not params:
        return {}
    if not isinstance(params, Mapping):
        raise DecodingError(f"Parameters must be an object, got {type(params).__name__}")
    result: Dict[str, ParameterValue] = {}
    for key, val in params.items():
        if not isinstance(key, str):
            raise DecodingError(f"Parameter names must be strings, got {key!r}")
        result[key] = ParameterValue.from_json(val)
    return result


def parameters_to_json(params: Mapping[str, ParameterValue]) -> Dict[str, Any]:
    return {k: v.to_json() for k, v in params.items()}
