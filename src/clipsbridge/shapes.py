"""Shape descriptors: how host struct types expose their fields.

A shape descriptor reports the ordered field list of a family of host types
and knows how to build and fill their values. Dataclasses and pydantic models
are supported out of the box; other types can be registered explicitly with
``register_shape``.
"""

from __future__ import annotations

from dataclasses import dataclass
import dataclasses
import typing
from typing import Any, Callable, Optional

from pydantic import BaseModel

from clipsbridge.errors import UnsupportedTypeError
from clipsbridge.values import Symbol, InstanceName, sequence_item_type, unwrap_optional


_MISSING = object()


@dataclass(frozen=True)
class FieldShape:
    """One host field as seen by the reflector.

    Attributes:
        attr: Attribute name on the host object.
        hint: Resolved type annotation.
        binding_name: Override from the binding-specific tag, if any.
        serialization_name: Override from the generic serialization tag, if any.
        default: Default value, or ``_MISSING``.
        default_factory: Zero-argument default factory, if any.
    """

    attr: str
    hint: Any
    binding_name: Optional[str] = None
    serialization_name: Optional[str] = None
    default: Any = _MISSING
    default_factory: Optional[Callable[[], Any]] = None

    @property
    def engine_name(self) -> str:
        return self.binding_name or self.serialization_name or self.attr

    def initial_value(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is not _MISSING:
            return self.default
        return zero_value(self.hint)


class ShapeDescriptor:
    """Describes one family of host struct types."""

    def matches(self, tp: Any) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def fields(
        self, tp: type, *, binding_tag: str = "clips", serialization_tag: str = "json"
    ) -> list[FieldShape]:  # pragma: no cover - interface
        raise NotImplementedError

    def blank(self, tp: type, fields: list[FieldShape]) -> object:  # pragma: no cover - interface
        """Build a value whose fields hold their defaults or zero values."""
        raise NotImplementedError

    def assign(self, obj: object, attr: str, value: Any) -> None:
        object.__setattr__(obj, attr, value)

    def get(self, obj: object, attr: str) -> Any:
        return getattr(obj, attr)


class DataclassShape(ShapeDescriptor):
    def matches(self, tp: Any) -> bool:
        return isinstance(tp, type) and dataclasses.is_dataclass(tp)

    def fields(
        self, tp: type, *, binding_tag: str = "clips", serialization_tag: str = "json"
    ) -> list[FieldShape]:
        hints = _type_hints(tp)
        shapes: list[FieldShape] = []
        for item in dataclasses.fields(tp):
            metadata = item.metadata or {}
            factory = item.default_factory
            shapes.append(
                FieldShape(
                    attr=item.name,
                    hint=hints.get(item.name, Any),
                    binding_name=_tag(metadata.get(binding_tag)),
                    serialization_name=_tag(metadata.get(serialization_tag)),
                    default=item.default if item.default is not dataclasses.MISSING else _MISSING,
                    default_factory=factory if factory is not dataclasses.MISSING else None,
                )
            )
        return shapes

    def blank(self, tp: type, fields: list[FieldShape]) -> object:
        obj = tp.__new__(tp)
        for item in fields:
            object.__setattr__(obj, item.attr, item.initial_value())
        return obj


class PydanticShape(ShapeDescriptor):
    def matches(self, tp: Any) -> bool:
        return isinstance(tp, type) and issubclass(tp, BaseModel)

    def fields(
        self, tp: type, *, binding_tag: str = "clips", serialization_tag: str = "json"
    ) -> list[FieldShape]:
        shapes: list[FieldShape] = []
        for name, info in tp.model_fields.items():
            extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
            default: Any = _MISSING
            factory = None
            if not info.is_required():
                if info.default_factory is not None:
                    factory = info.default_factory
                else:
                    default = info.default
            shapes.append(
                FieldShape(
                    attr=name,
                    hint=info.annotation if info.annotation is not None else Any,
                    binding_name=_tag(extra.get(binding_tag)),
                    serialization_name=_tag(info.alias),
                    default=default,
                    default_factory=factory,
                )
            )
        return shapes

    def blank(self, tp: type, fields: list[FieldShape]) -> object:
        return tp.model_construct(**{item.attr: item.initial_value() for item in fields})

    def assign(self, obj: object, attr: str, value: Any) -> None:
        # Bypasses validate_assignment and frozen models alike.
        obj.__dict__[attr] = value


_SHAPES: list[ShapeDescriptor] = [DataclassShape(), PydanticShape()]


def register_shape(descriptor: ShapeDescriptor) -> None:
    """Register a descriptor; later registrations take precedence."""

    if not isinstance(descriptor, ShapeDescriptor):
        raise UnsupportedTypeError("register_shape requires a ShapeDescriptor.")
    _SHAPES.insert(0, descriptor)


def unregister_shape(descriptor: ShapeDescriptor) -> None:
    if descriptor in _SHAPES:
        _SHAPES.remove(descriptor)


def shape_for(tp: Any) -> Optional[ShapeDescriptor]:
    for descriptor in _SHAPES:
        if descriptor.matches(tp):
            return descriptor
    return None


def is_struct(tp: Any) -> bool:
    return shape_for(tp) is not None


def class_name(tp: type) -> str:
    """Engine class name for a host struct type."""

    override = getattr(tp, "__clips_class__", None)
    if override:
        return str(override)
    return tp.__name__


def zero_value(hint: Any) -> Any:
    """Value a field holds when the engine supplies nothing for it."""

    inner, optional = unwrap_optional(hint)
    if optional:
        return None
    if inner is bool:
        return False
    if inner is Symbol:
        return Symbol("")
    if inner is InstanceName:
        return InstanceName("")
    if isinstance(inner, type) and issubclass(inner, int):
        return 0
    if inner is float:
        return 0.0
    if inner is str:
        return ""
    if inner is dict or typing.get_origin(inner) is dict:
        return {}
    if sequence_item_type(inner) is not None:
        origin = typing.get_origin(inner) or inner
        return () if origin is tuple else []
    return None


def _tag(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _type_hints(tp: type) -> dict[str, Any]:
    try:
        return typing.get_type_hints(tp)
    except (NameError, TypeError) as exc:
        raise UnsupportedTypeError(f"Cannot resolve annotations of {tp.__name__}: {exc}") from exc
