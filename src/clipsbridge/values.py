"""Engine value model and host conversion rules.

Engine values form a closed tagged union (``EngineValue`` subclasses). Host
values are plain Python objects plus a few marker types that keep engine
kinds distinguishable on the host side:

* ``Symbol`` and ``InstanceName`` are ``str`` subclasses.
* ``Int8`` ... ``UInt64`` are ``int`` subclasses used as destination types
  when an engine integer must fit a narrower width.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
import re
import types
from typing import TYPE_CHECKING, Any, Callable, Optional, Union, get_args, get_origin
import collections.abc

from clipsbridge.errors import (
    OutOfRangeError,
    PrecisionLossError,
    UnsupportedTypeError,
)

if TYPE_CHECKING:
    from clipsbridge.handles import Fact, Instance


INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

_SAFE_SYMBOL = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-.*:/!]*$")


class Symbol(str):
    """Host value for an engine symbol."""

    __slots__ = ()

    def __repr__(self) -> str:
        return f"Symbol({str.__repr__(self)})"


class InstanceName(str):
    """Host value for an engine instance name (without brackets)."""

    __slots__ = ()

    def __repr__(self) -> str:
        return f"InstanceName({str.__repr__(self)})"


class SizedInt(int):
    """Integer destination type with a fixed width."""

    bits = 64
    signed = True

    @classmethod
    def bounds(cls) -> tuple[int, int]:
        if cls.signed:
            return -(1 << (cls.bits - 1)), (1 << (cls.bits - 1)) - 1
        return 0, (1 << cls.bits) - 1


class Int8(SizedInt):
    bits = 8


class Int16(SizedInt):
    bits = 16


class Int32(SizedInt):
    bits = 32


class Int64(SizedInt):
    bits = 64


class UInt8(SizedInt):
    bits = 8
    signed = False


class UInt16(SizedInt):
    bits = 16
    signed = False


class UInt32(SizedInt):
    bits = 32
    signed = False


class UInt64(SizedInt):
    bits = 64
    signed = False


class EngineValue:
    """Base class of the engine value union."""

    kind = "ANY"


@dataclass(frozen=True)
class IntegerValue(EngineValue):
    value: int
    kind = "INTEGER"

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise UnsupportedTypeError(f"IntegerValue requires an int, got {type(self.value).__name__}.")
        if not INT64_MIN <= self.value <= INT64_MAX:
            raise OutOfRangeError(f"Integer {self.value} does not fit in 64 bits.")


@dataclass(frozen=True)
class FloatValue(EngineValue):
    value: float
    kind = "FLOAT"


@dataclass(frozen=True)
class StringValue(EngineValue):
    value: str
    kind = "STRING"


@dataclass(frozen=True)
class SymbolValue(EngineValue):
    value: str
    kind = "SYMBOL"


@dataclass(frozen=True)
class InstanceNameValue(EngineValue):
    value: str
    kind = "INSTANCE-NAME"


@dataclass(frozen=True)
class MultifieldValue(EngineValue):
    items: tuple[EngineValue, ...] = ()
    kind = "MULTIFIELD"

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class InstanceAddressValue(EngineValue):
    instance: "Instance"
    kind = "INSTANCE-ADDRESS"


@dataclass(frozen=True)
class FactAddressValue(EngineValue):
    fact: "Fact"
    kind = "FACT-ADDRESS"


@dataclass(frozen=True, eq=False)
class ExternalAddressValue(EngineValue):
    pointer: object
    kind = "EXTERNAL-ADDRESS"


NIL = SymbolValue("nil")
TRUE = SymbolValue("TRUE")
FALSE = SymbolValue("FALSE")

# Callback used by from_engine() for destinations it cannot build itself
# (structs, mappings, handles). Receives the engine value and the destination.
Resolver = Callable[[EngineValue, Any], Any]


def is_nil(value: EngineValue) -> bool:
    return isinstance(value, SymbolValue) and value.value == "nil"


def to_engine(value: object) -> EngineValue:
    """Convert a host value to an engine value using its runtime type."""

    if isinstance(value, EngineValue):
        return value
    if value is None:
        return NIL
    if isinstance(value, bool):
        return TRUE if value else FALSE
    if isinstance(value, int):
        return IntegerValue(int(value))
    if isinstance(value, float):
        return FloatValue(value)
    if isinstance(value, Symbol):
        return SymbolValue(str(value))
    if isinstance(value, InstanceName):
        return InstanceNameValue(str(value))
    if isinstance(value, str):
        return StringValue(value)
    if isinstance(value, (list, tuple)):
        return MultifieldValue(tuple(to_engine(item) for item in value))

    from clipsbridge.handles import Fact, Instance

    if isinstance(value, Instance):
        return InstanceAddressValue(value)
    if isinstance(value, Fact):
        return FactAddressValue(value)
    raise UnsupportedTypeError(f"No engine representation for {type(value).__name__}.")


def to_engine_typed(value: object, hint: Any) -> EngineValue:
    """Convert a host value to the engine kind its declared type asks for."""

    hint, optional = unwrap_optional(hint)
    if value is None:
        if optional or is_dynamic(hint):
            return NIL
        raise UnsupportedTypeError(f"None is not allowed for non-optional {_type_name(hint)}.")
    if is_dynamic(hint):
        return to_engine(value)
    sequence_item = sequence_item_type(hint)
    if sequence_item is not None:
        if not isinstance(value, (list, tuple)):
            raise UnsupportedTypeError(f"Expected a sequence for {_type_name(hint)}, got {type(value).__name__}.")
        return MultifieldValue(tuple(to_engine_typed(item, sequence_item) for item in value))
    if hint is bool:
        if not isinstance(value, bool):
            raise UnsupportedTypeError(f"Expected bool, got {type(value).__name__}.")
        return TRUE if value else FALSE
    if isinstance(hint, type) and issubclass(hint, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise UnsupportedTypeError(f"Expected int, got {type(value).__name__}.")
        return IntegerValue(_check_int_bounds(int(value), hint))
    if hint is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise UnsupportedTypeError(f"Expected float, got {type(value).__name__}.")
        return FloatValue(float(value))
    if hint is Symbol:
        if not isinstance(value, str):
            raise UnsupportedTypeError(f"Expected str for Symbol, got {type(value).__name__}.")
        return SymbolValue(str(value))
    if hint is InstanceName:
        if not isinstance(value, str):
            raise UnsupportedTypeError(f"Expected str for InstanceName, got {type(value).__name__}.")
        return InstanceNameValue(str(value))
    if hint is str:
        if not isinstance(value, str):
            raise UnsupportedTypeError(f"Expected str, got {type(value).__name__}.")
        return StringValue(str(value))
    return to_engine(value)


def from_engine(value: EngineValue, dest: Any = Any, *, resolve: Optional[Resolver] = None) -> Any:
    """Convert an engine value to the host destination type ``dest``."""

    if not isinstance(value, EngineValue):
        raise UnsupportedTypeError(f"Not an engine value: {type(value).__name__}.")
    dest, optional = unwrap_optional(dest)
    if optional and is_nil(value):
        return None
    if is_dynamic(dest):
        return _dynamic(value)
    if isinstance(dest, type) and issubclass(dest, EngineValue):
        if isinstance(value, dest):
            return value
        raise UnsupportedTypeError(f"Expected {dest.__name__}, got {type(value).__name__}.")
    if is_union(dest):
        return _from_union(value, dest, resolve)
    sequence_item = sequence_item_type(dest)
    if sequence_item is not None:
        if not isinstance(value, MultifieldValue):
            raise UnsupportedTypeError(f"Cannot convert {value.kind} to sequence {_type_name(dest)}.")
        items = [from_engine(item, sequence_item, resolve=resolve) for item in value.items]
        return tuple(items) if _sequence_origin(dest) is tuple else items
    if dest is bool:
        if isinstance(value, SymbolValue) and value.value in ("TRUE", "FALSE"):
            return value.value == "TRUE"
        raise UnsupportedTypeError(f"Cannot convert {value.kind} to bool.")
    if isinstance(dest, type) and issubclass(dest, int):
        return _to_int(value, dest)
    if dest is float:
        if isinstance(value, (IntegerValue, FloatValue)):
            return float(value.value)
        raise UnsupportedTypeError(f"Cannot convert {value.kind} to float.")
    if dest is Symbol:
        if isinstance(value, SymbolValue):
            return Symbol(value.value)
        raise UnsupportedTypeError(f"Cannot convert {value.kind} to Symbol.")
    if dest is InstanceName:
        if isinstance(value, (InstanceNameValue, SymbolValue)):
            return InstanceName(value.value)
        if isinstance(value, InstanceAddressValue):
            return InstanceName(value.instance.name)
        raise UnsupportedTypeError(f"Cannot convert {value.kind} to InstanceName.")
    if dest is str:
        if isinstance(value, (StringValue, SymbolValue, InstanceNameValue)):
            return str(value.value)
        raise UnsupportedTypeError(f"Cannot convert {value.kind} to str.")
    if resolve is not None:
        return resolve(value, dest)
    raise UnsupportedTypeError(f"Unsupported destination type: {_type_name(dest)}.")


def render(value: EngineValue) -> str:
    """Render an engine value as expression text the engine can read back."""

    if isinstance(value, IntegerValue):
        return str(value.value)
    if isinstance(value, FloatValue):
        if not math.isfinite(value.value):
            raise UnsupportedTypeError(f"Float {value.value} has no engine literal.")
        return repr(float(value.value))
    if isinstance(value, StringValue):
        return quote(value.value)
    if isinstance(value, SymbolValue):
        if _SAFE_SYMBOL.match(value.value):
            return value.value
        return f"(sym-cat {quote(value.value)})"
    if isinstance(value, InstanceNameValue):
        if _SAFE_SYMBOL.match(value.value):
            return f"[{value.value}]"
        return f"(symbol-to-instance-name (sym-cat {quote(value.value)}))"
    if isinstance(value, MultifieldValue):
        return "(create$" + "".join(" " + render(item) for item in value.items) + ")"
    if isinstance(value, InstanceAddressValue):
        return f"(instance-address {render(InstanceNameValue(value.instance.name))})"
    raise UnsupportedTypeError(f"{value.kind} values cannot be written as engine text.")


def quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def is_safe_symbol(text: str) -> bool:
    return bool(_SAFE_SYMBOL.match(text))


def is_dynamic(hint: Any) -> bool:
    return hint is Any or hint is object or hint is None


def unwrap_optional(hint: Any) -> tuple[Any, bool]:
    """Split ``Optional[T]`` into ``(T, True)``; other hints pass through."""

    if is_union(hint):
        args = get_args(hint)
        non_none = [arg for arg in args if arg is not type(None)]
        if len(non_none) < len(args):
            if len(non_none) == 1:
                return non_none[0], True
            return Union[tuple(non_none)], True
    return hint, False


def sequence_item_type(hint: Any) -> Optional[Any]:
    """Return the element type of a sequence hint, ``Any`` when untyped, else None."""

    if hint in (list, tuple):
        return Any
    origin = _sequence_origin(hint)
    if origin is None:
        return None
    args = get_args(hint)
    if not args:
        return Any
    if origin is tuple:
        if len(args) == 2 and args[1] is Ellipsis:
            return args[0]
        if len(set(args)) == 1:
            return args[0]
        raise UnsupportedTypeError(f"Fixed-shape tuples are not supported: {_type_name(hint)}.")
    return args[0]


def _sequence_origin(hint: Any) -> Optional[type]:
    if hint is list or hint is tuple:
        return hint
    origin = get_origin(hint)
    if origin in (list, tuple):
        return origin
    if origin in (collections.abc.Sequence, collections.abc.MutableSequence):
        return list
    return None


def is_union(hint: Any) -> bool:
    origin = get_origin(hint)
    return origin is Union or origin is types.UnionType


def _from_union(value: EngineValue, dest: Any, resolve: Optional[Resolver]) -> Any:
    last_error: Optional[Exception] = None
    for member in get_args(dest):
        try:
            return from_engine(value, member, resolve=resolve)
        except (UnsupportedTypeError, OutOfRangeError, PrecisionLossError) as exc:
            last_error = exc
    raise UnsupportedTypeError(f"Cannot convert {value.kind} to {_type_name(dest)}.") from last_error


def _dynamic(value: EngineValue) -> Any:
    if isinstance(value, (IntegerValue, FloatValue, StringValue)):
        return value.value
    if isinstance(value, SymbolValue):
        return None if value.value == "nil" else Symbol(value.value)
    if isinstance(value, InstanceNameValue):
        return InstanceName(value.value)
    if isinstance(value, MultifieldValue):
        return [_dynamic(item) for item in value.items]
    if isinstance(value, InstanceAddressValue):
        return value.instance
    if isinstance(value, FactAddressValue):
        return value.fact
    if isinstance(value, ExternalAddressValue):
        return value.pointer
    raise UnsupportedTypeError(f"Unknown engine value: {type(value).__name__}.")


def _to_int(value: EngineValue, dest: type) -> int:
    if isinstance(value, IntegerValue):
        number = value.value
    elif isinstance(value, FloatValue):
        if not math.isfinite(value.value) or not float(value.value).is_integer():
            raise PrecisionLossError(f"Float {value.value} has a fractional part.")
        number = int(value.value)
    else:
        raise UnsupportedTypeError(f"Cannot convert {value.kind} to {dest.__name__}.")
    return _check_int_bounds(number, dest)


def _check_int_bounds(number: int, dest: type) -> int:
    if isinstance(dest, type) and issubclass(dest, SizedInt):
        low, high = dest.bounds()
    else:
        low, high = INT64_MIN, INT64_MAX
    if not low <= number <= high:
        raise OutOfRangeError(f"Integer {number} is out of range for {dest.__name__} [{low}, {high}].")
    return number


def _type_name(hint: Any) -> str:
    return getattr(hint, "__name__", None) or repr(hint)
