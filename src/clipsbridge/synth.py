"""Class synthesis: defclass text from slot schemas."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from clipsbridge.errors import SchemaMismatchError
from clipsbridge.reflect import ClassSchema, SlotSchema, TypeReflector

if TYPE_CHECKING:
    from clipsbridge.config import BridgeConfig
    from clipsbridge.runtime import ClipsRuntime

logger = logging.getLogger(__name__)

_PRIMITIVE_TYPES = {
    "INTEGER": "INTEGER",
    "FLOAT": "FLOAT",
    "STRING": "STRING",
    "SYMBOL": "SYMBOL",
    "INSTANCE-NAME": "INSTANCE-NAME",
}


def render_slot(slot: SlotSchema, *, constrain_class: bool = True) -> str:
    """Render one slot definition with its type constraints."""

    keyword = "multislot" if slot.multi else "slot"
    facets: list[str] = []
    nullable = slot.optional or (slot.kind == "CLASS-REFERENCE" and not slot.multi)
    if slot.kind == "CLASS-REFERENCE":
        if nullable:
            facets += ["(type INSTANCE-NAME SYMBOL)", "(allowed-symbols nil)"]
        else:
            facets.append("(type INSTANCE-NAME)")
        if constrain_class and slot.referenced_class:
            facets.append(f"(allowed-classes {slot.referenced_class})")
    elif slot.kind == "BOOLEAN":
        symbols = "TRUE FALSE nil" if nullable else "TRUE FALSE"
        facets += ["(type SYMBOL)", f"(allowed-symbols {symbols})"]
        if not slot.multi and not nullable:
            facets.append("(default FALSE)")
    elif slot.kind == "SYMBOL":
        facets.append("(type SYMBOL)")
    elif slot.kind in _PRIMITIVE_TYPES:
        engine_type = _PRIMITIVE_TYPES[slot.kind]
        if nullable:
            facets += [f"(type {engine_type} SYMBOL)", "(allowed-symbols nil)"]
        else:
            facets.append(f"(type {engine_type})")
    if nullable and not slot.multi:
        facets.append("(default nil)")
    facets.append("(create-accessor read-write)")
    return f"({keyword} {slot.name} {' '.join(facets)})"


def render_defclass(
    schema: ClassSchema,
    *,
    superclass: str = "USER",
    pattern_match: str = "reactive",
    forward: Iterable[str] = (),
) -> str:
    """Render a defclass for ``schema``.

    ``forward`` names classes that are not defined yet; slots referencing
    them are emitted without an allowed-classes constraint.
    """

    pending = set(forward)
    parts = [
        f"(defclass {schema.name}",
        f"  (is-a {superclass})",
        "  (role concrete)",
        f"  (pattern-match {pattern_match})",
    ]
    for slot in schema.slots:
        constrain = slot.referenced_class not in pending
        parts.append("  " + render_slot(slot, constrain_class=constrain))
    return "\n".join(parts) + ")"


class ClassSynthesizer:
    """Defines engine classes for host types, nested classes first."""

    def __init__(self, runtime: "ClipsRuntime", reflector: TypeReflector, config: "BridgeConfig") -> None:
        self._runtime = runtime
        self._reflector = reflector
        self._config = config

    def class_exists(self, name: str) -> bool:
        return self._runtime.is_true(f"(class-existp {name})")

    def synthesize(self, tp: type) -> list[str]:
        """Define ``tp``'s class and every class it references.

        Classes that already exist are trusted as-is. Returns the defclass
        texts that were built, in build order.
        """

        emitted: list[str] = []
        self._synthesize(self._reflector.reflect(tp), emitted, visiting=set())
        return emitted

    def _synthesize(self, schema: ClassSchema, emitted: list[str], visiting: set[str]) -> None:
        if schema.name in visiting or self.class_exists(schema.name):
            return
        visiting.add(schema.name)
        forward: set[str] = set()
        for nested in schema.references():
            nested_schema = self._reflector.reflect(nested)
            if nested_schema.name in visiting:
                forward.add(nested_schema.name)
                continue
            self._synthesize(nested_schema, emitted, visiting)
        text = render_defclass(
            schema,
            superclass=self._config.superclass,
            pattern_match=self._config.pattern_match,
            forward=forward,
        )
        self._runtime.build(text)
        logger.debug("synthesized class %s for %s", schema.name, schema.host_type.__name__)
        emitted.append(text)

    def verify(self, schema: ClassSchema) -> None:
        """Check that the engine class can hold values of ``schema``."""

        if not self.class_exists(schema.name):
            raise SchemaMismatchError(f"Class {schema.name} is not defined.")
        present = set(self._runtime.names(f"(class-slots {schema.name} inherit)"))
        for slot in schema.slots:
            if slot.name not in present:
                raise SchemaMismatchError(f"Class {schema.name} has no slot {slot.name}.")
            facets = self._runtime.names(f"(slot-facets {schema.name} {slot.name})")
            multi = bool(facets) and facets[0] == "MLT"
            if multi != slot.multi:
                expected = "multislot" if slot.multi else "single slot"
                raise SchemaMismatchError(f"Class {schema.name} slot {slot.name} is not a {expected}.")
