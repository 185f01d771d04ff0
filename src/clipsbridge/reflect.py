"""Type reflection: host struct types to normalized slot schemas."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Literal, Optional

from clipsbridge.errors import UnsupportedTypeError
from clipsbridge.shapes import FieldShape, class_name, is_struct, shape_for
from clipsbridge.values import (
    InstanceName,
    Symbol,
    is_dynamic,
    is_union,
    is_safe_symbol,
    sequence_item_type,
    unwrap_optional,
)

logger = logging.getLogger(__name__)

SlotKind = Literal[
    "INTEGER",
    "FLOAT",
    "STRING",
    "SYMBOL",
    "INSTANCE-NAME",
    "BOOLEAN",
    "ANY",
    "CLASS-REFERENCE",
]
Cardinality = Literal["single", "multi"]


@dataclass(frozen=True)
class SlotSchema:
    """Normalized description of one slot.

    Attributes:
        name: Engine slot name (after tag overrides).
        attr: Host attribute the slot is read from and written to.
        kind: Engine value kind, or "CLASS-REFERENCE" for nested structs.
        cardinality: "single" for slots, "multi" for multislots.
        referenced_class: Engine class name for class references.
        optional: Whether the host value may be absent (``nil``).
        hint: Full host type annotation.
        referenced_type: Host type behind a class reference.
    """

    name: str
    attr: str
    kind: SlotKind
    cardinality: Cardinality = "single"
    referenced_class: Optional[str] = None
    optional: bool = False
    hint: Any = Any
    referenced_type: Optional[type] = None

    @property
    def multi(self) -> bool:
        return self.cardinality == "multi"


@dataclass(frozen=True)
class ClassSchema:
    """Ordered slot schema of one host struct type."""

    name: str
    host_type: type
    slots: tuple[SlotSchema, ...] = field(default_factory=tuple)

    def slot(self, name: str) -> Optional[SlotSchema]:
        for slot in self.slots:
            if slot.name == name:
                return slot
        return None

    def references(self) -> list[type]:
        seen: list[type] = []
        for slot in self.slots:
            if slot.referenced_type is not None and slot.referenced_type not in seen:
                seen.append(slot.referenced_type)
        return seen


class TypeReflector:
    """Builds and memoizes ``ClassSchema`` objects by type identity."""

    def __init__(self, *, binding_tag: str = "clips", serialization_tag: str = "json") -> None:
        self.binding_tag = binding_tag
        self.serialization_tag = serialization_tag
        self._cache: dict[type, ClassSchema] = {}
        self._in_progress: set[type] = set()

    def reflect(self, tp: type) -> ClassSchema:
        cached = self._cache.get(tp)
        if cached is not None:
            return cached
        if tp in self._in_progress:
            raise UnsupportedTypeError(f"{tp.__name__} is still being reflected.")
        self._in_progress.add(tp)
        try:
            schema = self._build(tp)
            self._cache[tp] = schema
            for nested in schema.references():
                # Types already in progress are forward references.
                if nested not in self._cache and nested not in self._in_progress:
                    self.reflect(nested)
        except BaseException:
            self._cache.pop(tp, None)
            raise
        finally:
            self._in_progress.discard(tp)
        return schema

    def fields(self, tp: type) -> list[FieldShape]:
        shape = shape_for(tp)
        if shape is None:
            raise UnsupportedTypeError(f"{getattr(tp, '__name__', tp)!r} is not a struct type.")
        return shape.fields(tp, binding_tag=self.binding_tag, serialization_tag=self.serialization_tag)

    def _build(self, tp: type) -> ClassSchema:
        name = class_name(tp)
        if not is_safe_symbol(name):
            raise UnsupportedTypeError(f"Class name {name!r} is not a valid engine symbol.")
        slots: list[SlotSchema] = []
        seen: set[str] = set()
        for item in self.fields(tp):
            slot = self._slot(tp, item)
            if slot.name in seen:
                raise UnsupportedTypeError(f"{tp.__name__} maps two fields to slot {slot.name!r}.")
            seen.add(slot.name)
            slots.append(slot)
        logger.debug("reflected %s as class %s with %d slots", tp.__name__, name, len(slots))
        return ClassSchema(name=name, host_type=tp, slots=tuple(slots))

    def _slot(self, owner: type, item: FieldShape) -> SlotSchema:
        name = item.engine_name
        if not is_safe_symbol(name) or name in ("is-a", "name"):
            raise UnsupportedTypeError(f"{owner.__name__}.{item.attr}: {name!r} is not a usable slot name.")
        hint, optional = unwrap_optional(item.hint)
        cardinality: Cardinality = "single"
        element = sequence_item_type(hint)
        if element is not None:
            cardinality = "multi"
            hint, optional = unwrap_optional(element)
            if sequence_item_type(hint) is not None:
                raise UnsupportedTypeError(f"{owner.__name__}.{item.attr}: nested sequences are not supported.")
        kind, referenced = _kind_for(hint, owner, item.attr)
        return SlotSchema(
            name=name,
            attr=item.attr,
            kind=kind,
            cardinality=cardinality,
            referenced_class=class_name(referenced) if referenced is not None else None,
            optional=optional,
            hint=item.hint,
            referenced_type=referenced,
        )


def _kind_for(hint: Any, owner: type, attr: str) -> tuple[SlotKind, Optional[type]]:
    if is_dynamic(hint):
        return "ANY", None
    if hint is bool:
        return "BOOLEAN", None
    if hint is Symbol:
        return "SYMBOL", None
    if hint is InstanceName:
        return "INSTANCE-NAME", None
    if isinstance(hint, type) and issubclass(hint, int):
        return "INTEGER", None
    if hint is float:
        return "FLOAT", None
    if hint is str:
        return "STRING", None
    if is_struct(hint):
        return "CLASS-REFERENCE", hint
    if is_union(hint):
        # Non-optional unions carry no single engine type.
        return "ANY", None
    raise UnsupportedTypeError(f"{owner.__name__}.{attr}: no slot kind for {hint!r}.")
