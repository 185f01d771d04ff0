"""Adapter over the CLIPS runtime provided by clipspy.

Only this module talks to ``clips`` directly. Everything else goes through
the textual command/evaluation entry points exposed here and receives
``EngineValue`` objects.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import clips

from clipsbridge.errors import ConstructionError, InvalidReferenceError, UnsupportedTypeError
from clipsbridge.values import (
    FALSE,
    NIL,
    TRUE,
    EngineValue,
    ExternalAddressValue,
    FactAddressValue,
    FloatValue,
    InstanceAddressValue,
    InstanceNameValue,
    IntegerValue,
    MultifieldValue,
    StringValue,
    SymbolValue,
    quote,
)

logger = logging.getLogger(__name__)

InstanceBinder = Callable[[str], Any]
FactBinder = Callable[[int], Any]


class ClipsRuntime:
    """One CLIPS environment plus native/engine value translation."""

    def __init__(self, *, bind_instance: InstanceBinder, bind_fact: FactBinder) -> None:
        self._env: Optional[clips.Environment] = clips.Environment()
        self._bind_instance = bind_instance
        self._bind_fact = bind_fact

    @property
    def closed(self) -> bool:
        return self._env is None

    def build(self, construct: str) -> None:
        """Define a construct (defclass, deftemplate, defrule ...)."""

        env = self._require()
        logger.debug("build: %s", construct)
        try:
            env.build(construct)
        except clips.CLIPSError as exc:
            raise ConstructionError("Engine rejected construct", command=construct, diagnostic=str(exc)) from exc

    def evaluate(self, expression: str) -> EngineValue:
        env = self._require()
        logger.debug("eval: %s", expression)
        try:
            native = env.eval(expression)
        except clips.CLIPSError as exc:
            raise ConstructionError(
                "Engine rejected expression", command=expression, diagnostic=str(exc)
            ) from exc
        return self.to_value(native)

    def is_true(self, expression: str) -> bool:
        value = self.evaluate(expression)
        if isinstance(value, SymbolValue):
            return value.value not in ("FALSE", "nil")
        return True

    def names(self, expression: str) -> list[str]:
        """Evaluate an expression that yields a multifield of lexemes."""

        value = self.evaluate(expression)
        if isinstance(value, MultifieldValue):
            return [str(getattr(item, "value", item)) for item in value.items]
        if value == FALSE:
            return []
        return [str(getattr(value, "value", value))]

    def list_classes(self) -> list[str]:
        return self.names("(get-defclass-list)")

    def list_templates(self) -> list[str]:
        return self.names("(get-deftemplate-list)")

    def register_callable(self, name: str, trampoline: Callable[..., Any]) -> None:
        env = self._require()
        logger.debug("register function %s", name)
        try:
            env.define_function(trampoline, name=name)
        except clips.CLIPSError as exc:
            raise ConstructionError(
                f"Engine rejected function {name}", command=name, diagnostic=str(exc)
            ) from exc

    def is_function(self, name: str) -> bool:
        return self.is_true(
            f"(or (member$ {name} (get-function-list)) (member$ {name} (get-deffunction-list)))"
        )

    def clear(self) -> None:
        self._require().clear()

    def reset(self) -> None:
        self._require().reset()

    def run(self, limit: Optional[int] = None) -> int:
        return self._require().run(limit)

    def load(self, path: str | Path) -> None:
        env = self._require()
        try:
            env.load(str(path))
        except clips.CLIPSError as exc:
            raise ConstructionError(f"Engine failed to load {path}", command=str(path), diagnostic=str(exc)) from exc

    def batch_star(self, path: str | Path) -> None:
        env = self._require()
        try:
            env.batch_star(str(path))
        except clips.CLIPSError as exc:
            raise ConstructionError(
                f"Engine failed to batch {path}", command=str(path), diagnostic=str(exc)
            ) from exc

    def close(self) -> None:
        self._env = None

    def to_value(self, native: Any) -> EngineValue:
        """Translate a clipspy value into an ``EngineValue``."""

        if isinstance(native, bool):
            return TRUE if native else FALSE
        if native is None:
            return NIL
        if isinstance(native, clips.InstanceName):
            return InstanceNameValue(str(native))
        if isinstance(native, clips.Symbol):
            return SymbolValue(str(native))
        if isinstance(native, int):
            return IntegerValue(native)
        if isinstance(native, float):
            return FloatValue(native)
        if isinstance(native, str):
            return StringValue(native)
        if isinstance(native, (list, tuple)):
            return MultifieldValue(tuple(self.to_value(item) for item in native))
        if isinstance(native, clips.Instance):
            return InstanceAddressValue(self._bind_instance(str(native.name)))
        if isinstance(native, (clips.ImpliedFact, clips.TemplateFact)):
            return FactAddressValue(self._bind_fact(int(native.index)))
        return ExternalAddressValue(native)

    def to_native(self, value: EngineValue) -> Any:
        """Translate an ``EngineValue`` into something clipspy accepts."""

        if isinstance(value, (IntegerValue, FloatValue, StringValue)):
            return value.value
        if isinstance(value, SymbolValue):
            return clips.Symbol(value.value)
        if isinstance(value, InstanceNameValue):
            return clips.InstanceName(value.value)
        if isinstance(value, MultifieldValue):
            return [self.to_native(item) for item in value.items]
        if isinstance(value, InstanceAddressValue):
            return clips.InstanceName(value.instance.name)
        if isinstance(value, ExternalAddressValue):
            return value.pointer
        raise UnsupportedTypeError(f"{value.kind} values cannot be handed back to the engine.")

    def assert_string(self, text: str) -> EngineValue:
        return self.evaluate(f"(assert-string {quote(text)})")

    def _require(self) -> clips.Environment:
        if self._env is None:
            raise InvalidReferenceError("The engine environment has been closed.")
        return self._env
