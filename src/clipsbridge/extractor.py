"""Extraction: engine instances and facts back into host values.

Destinations are either a type (a new value is built) or an existing
dataclass, pydantic model, dict or list (filled in place). Struct fields
without a matching slot keep their default or zero value. Instance
references are followed into struct-typed fields; an instance met again
within one extraction yields the host object already built for it, so
cyclic instance graphs come back as cyclic host graphs.
"""

from __future__ import annotations

import logging
import typing
from typing import TYPE_CHECKING, Any, Optional

from clipsbridge.errors import SchemaMismatchError, UnsupportedTypeError
from clipsbridge.reflect import TypeReflector
from clipsbridge.shapes import shape_for
from clipsbridge.values import (
    EngineValue,
    FactAddressValue,
    InstanceAddressValue,
    InstanceNameValue,
    from_engine,
    is_dynamic,
    is_nil,
    sequence_item_type,
    unwrap_optional,
)

if TYPE_CHECKING:
    from clipsbridge.environment import Environment
    from clipsbridge.handles import Fact, Instance

logger = logging.getLogger(__name__)

Visited = dict[tuple[str, int], object]


class Extractor:
    def __init__(self, env: "Environment", reflector: TypeReflector) -> None:
        self._env = env
        self._reflector = reflector

    def extract(self, source: Any, into: Any = Any) -> Any:
        """Extract an instance, fact or engine value into ``into``."""

        from clipsbridge.handles import Fact, Instance

        dest, target = _split_destination(into)
        visited: Visited = {}
        if isinstance(source, Instance):
            if is_dynamic(dest):
                dest = dict
            return self._instance(source, dest, visited, target)
        if isinstance(source, Fact):
            return self._fact(source, dest, visited, target)
        if isinstance(source, EngineValue):
            return self.extract_value(source, dest, visited=visited)
        raise UnsupportedTypeError(f"Cannot extract from {type(source).__name__}.")

    def extract_value(self, value: EngineValue, into: Any = Any, *, visited: Optional[Visited] = None) -> Any:
        visited = {} if visited is None else visited
        dest, _ = unwrap_optional(into)
        if isinstance(value, FactAddressValue) and _is_container(dest):
            return self._fact(value.fact, dest, visited, None)
        return from_engine(value, into, resolve=lambda v, d: self.resolve(v, d, visited))

    def resolve(self, value: EngineValue, dest: Any, visited: Optional[Visited] = None) -> Any:
        """Build handle, struct or container destinations ``from_engine`` cannot."""

        from clipsbridge.handles import Fact, Instance

        visited = {} if visited is None else visited
        if dest is Instance:
            return self._instance_handle(value)
        if dest is Fact:
            if isinstance(value, FactAddressValue):
                return value.fact
            raise UnsupportedTypeError(f"Cannot convert {value.kind} to Fact.")
        if shape_for(dest) is not None and is_nil(value):
            return None
        if _is_container(dest):
            if isinstance(value, (InstanceNameValue, InstanceAddressValue)):
                return self._instance(self._instance_handle(value), dest, visited, None)
            if isinstance(value, FactAddressValue):
                return self._fact(value.fact, dest, visited, None)
        raise UnsupportedTypeError(f"Cannot convert {value.kind} to {getattr(dest, '__name__', dest)!r}.")

    def _instance_handle(self, value: EngineValue) -> "Instance":
        if isinstance(value, InstanceAddressValue):
            return value.instance
        if isinstance(value, InstanceNameValue):
            return self._env.instance_handle(value.value)
        raise UnsupportedTypeError(f"Cannot convert {value.kind} to Instance.")

    def _instance(self, handle: "Instance", dest: Any, visited: Visited, target: Any) -> Any:
        key = (handle.name, id(dest))
        if key in visited:
            return visited[key]
        slot_names = handle.slot_names()
        if _is_mapping(dest):
            result = target if target is not None else {}
            visited[key] = result
            value_type = _mapping_value_type(dest)
            for name in slot_names:
                result[name] = self.extract_value(handle.slot(name), value_type, visited=visited)
            return result
        shape = shape_for(dest)
        if shape is None:
            raise UnsupportedTypeError(f"Instances extract into structs or mappings, not {dest!r}.")
        fields = self._reflector.fields(dest)
        obj = target if target is not None else shape.blank(dest, fields)
        visited[key] = obj
        present = set(slot_names)
        for item in fields:
            if item.engine_name not in present:
                continue
            value = handle.slot(item.engine_name)
            shape.assign(obj, item.attr, self.extract_value(value, item.hint, visited=visited))
        logger.debug("extracted [%s] into %s", handle.name, dest.__name__)
        return obj

    def _fact(self, fact: "Fact", dest: Any, visited: Visited, target: Any) -> Any:
        if is_dynamic(dest):
            dest = list if fact.implied else dict
        if fact.implied:
            if sequence_item_type(dest) is None and not _is_mapping(dest):
                raise SchemaMismatchError(f"Ordered fact f-{fact.index} extracts into a sequence or mapping.")
            values = fact.values()
            if _is_mapping(dest):
                result = target if target is not None else {}
                result["implied"] = [self.extract_value(value, Any, visited=visited) for value in values]
                return result
            item_type = sequence_item_type(dest)
            items = [self.extract_value(value, item_type, visited=visited) for value in values]
            if target is not None:
                target[:] = items
                return target
            origin = typing.get_origin(dest) or dest
            return tuple(items) if origin is tuple else items
        if sequence_item_type(dest) is not None:
            raise SchemaMismatchError(f"Template fact f-{fact.index} cannot extract into a sequence.")
        slot_names = fact.slot_names()
        if _is_mapping(dest):
            result = target if target is not None else {}
            value_type = _mapping_value_type(dest)
            for name in slot_names:
                result[name] = self.extract_value(fact.slot(name), value_type, visited=visited)
            return result
        shape = shape_for(dest)
        if shape is None:
            raise UnsupportedTypeError(f"Facts extract into structs, mappings or sequences, not {dest!r}.")
        fields = self._reflector.fields(dest)
        obj = target if target is not None else shape.blank(dest, fields)
        present = set(slot_names)
        for item in fields:
            if item.engine_name in present:
                value = fact.slot(item.engine_name)
                shape.assign(obj, item.attr, self.extract_value(value, item.hint, visited=visited))
        return obj


def _split_destination(into: Any) -> tuple[Any, Any]:
    """Return ``(destination type, existing object or None)``."""

    if into is Any or into is None or isinstance(into, type) or typing.get_origin(into) is not None:
        return into, None
    if isinstance(into, (dict, list)) or shape_for(type(into)) is not None:
        return type(into), into
    raise UnsupportedTypeError(f"Unsupported extraction destination: {into!r}.")


def _is_mapping(dest: Any) -> bool:
    return dest is dict or typing.get_origin(dest) is dict


def _mapping_value_type(dest: Any) -> Any:
    args = typing.get_args(dest)
    return args[1] if len(args) == 2 else Any


def _is_container(dest: Any) -> bool:
    return _is_mapping(dest) or shape_for(dest) is not None or sequence_item_type(dest) is not None
