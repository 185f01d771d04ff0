"""Instance projection: host struct values to engine instances."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from clipsbridge.errors import SchemaMismatchError, UnsupportedTypeError
from clipsbridge.reflect import ClassSchema, SlotSchema, TypeReflector
from clipsbridge.shapes import shape_for
from clipsbridge.synth import ClassSynthesizer
from clipsbridge.values import (
    NIL,
    EngineValue,
    InstanceNameValue,
    MultifieldValue,
    SymbolValue,
    render,
    to_engine_typed,
)

if TYPE_CHECKING:
    from clipsbridge.environment import Environment
    from clipsbridge.handles import Instance

logger = logging.getLogger(__name__)


class InstanceProjector:
    """Inserts host struct values as engine instances.

    Nested struct values become their own instances and the parent slot holds
    the nested instance name. Values reachable more than once within one
    insert (shared or cyclic) map to a single instance.
    """

    def __init__(self, env: "Environment", reflector: TypeReflector, synthesizer: ClassSynthesizer) -> None:
        self._env = env
        self._reflector = reflector
        self._synthesizer = synthesizer

    def insert(self, value: object, name: Optional[str] = None) -> "Instance":
        if shape_for(type(value)) is None:
            raise UnsupportedTypeError(f"Cannot insert {type(value).__name__}: not a struct type.")
        names: dict[int, str] = {}
        prepared: set[type] = set()
        return self._insert(value, name, names, prepared)

    def _insert(
        self,
        value: object,
        name: Optional[str],
        names: dict[int, str],
        prepared: set[type],
    ) -> "Instance":
        schema = self._prepare(type(value), prepared)
        if name is None:
            name = self._generate_name()
        names[id(value)] = name
        shape = shape_for(type(value))
        overrides: list[str] = []
        for slot in schema.slots:
            field_value = shape.get(value, slot.attr)
            engine_value = self._slot_value(slot, field_value, names, prepared)
            overrides.append(f"({slot.name} {render(engine_value)})")
        command = f"(make-instance {render(InstanceNameValue(name))} of {schema.name}"
        command += "".join(" " + item for item in overrides) + ")"
        instance = self._env.make_instance(command)
        logger.debug("inserted %s as [%s]", type(value).__name__, instance.name)
        return instance

    def _prepare(self, tp: type, prepared: set[type]) -> ClassSchema:
        schema = self._reflector.reflect(tp)
        if tp in prepared:
            return schema
        if self._env.config.auto_synthesize:
            self._synthesizer.synthesize(tp)
        self._synthesizer.verify(schema)
        prepared.add(tp)
        return schema

    def _slot_value(
        self,
        slot: SlotSchema,
        field_value: Any,
        names: dict[int, str],
        prepared: set[type],
    ) -> EngineValue:
        if slot.kind != "CLASS-REFERENCE":
            if slot.multi and field_value is None:
                return MultifieldValue(())
            return to_engine_typed(field_value, slot.hint)
        if slot.multi:
            if field_value is None:
                return MultifieldValue(())
            if not isinstance(field_value, (list, tuple)):
                raise SchemaMismatchError(f"Slot {slot.name} expects a sequence of {slot.referenced_class}.")
            return MultifieldValue(
                tuple(self._reference(slot, item, names, prepared) for item in field_value)
            )
        return self._reference(slot, field_value, names, prepared)

    def _reference(
        self,
        slot: SlotSchema,
        nested: Any,
        names: dict[int, str],
        prepared: set[type],
    ) -> EngineValue:
        if nested is None:
            return NIL
        if not isinstance(nested, slot.referenced_type):
            raise SchemaMismatchError(
                f"Slot {slot.name} expects {slot.referenced_type.__name__}, got {type(nested).__name__}."
            )
        existing = names.get(id(nested))
        if existing is not None:
            return InstanceNameValue(existing)
        return InstanceNameValue(self._insert(nested, None, names, prepared).name)

    def _generate_name(self) -> str:
        value = self._env.eval("(gensym*)")
        if not isinstance(value, SymbolValue):
            raise UnsupportedTypeError(f"gensym* returned {value.kind}.")
        return value.value
