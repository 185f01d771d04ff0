"""The Environment: one engine runtime plus the host-side bridge around it.

An Environment is single-threaded. Callers sharing one across threads must
serialize every call themselves (one lock per Environment), or give each
thread its own Environment. Bridged functions run on the thread driving the
evaluation and must not mutate the same Environment while it is running.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Hashable, Optional, TypeVar

from clipsbridge.config import BridgeConfig
from clipsbridge.errors import CallbackError, ConstructionError, InvalidReferenceError
from clipsbridge.extractor import Extractor
from clipsbridge.functions import CallableSignature, FunctionBridge
from clipsbridge.handles import Class, Fact, Instance, Template
from clipsbridge.projector import InstanceProjector
from clipsbridge.reflect import TypeReflector
from clipsbridge.runtime import ClipsRuntime
from clipsbridge.synth import ClassSynthesizer
from clipsbridge.values import (
    EngineValue,
    FactAddressValue,
    InstanceAddressValue,
    InstanceNameValue,
    MultifieldValue,
    is_safe_symbol,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Environment:
    """Owns one CLIPS runtime and exposes insert/extract/eval on top of it."""

    def __init__(self, config: Optional[BridgeConfig] = None) -> None:
        self.config = config or BridgeConfig()
        # Construct epoch: bumped by clear(). Data epoch: bumped by clear() and reset().
        self._epoch = 0
        self._data_epoch = 0
        # Per-construct generation, bumped when a template or class is undefined.
        self._generations: dict[tuple[str, str], int] = {}
        self._runtime = ClipsRuntime(bind_instance=self.instance_handle, bind_fact=self.fact_handle)
        self.reflector = TypeReflector(
            binding_tag=self.config.binding_tag,
            serialization_tag=self.config.serialization_tag,
        )
        self.synthesizer = ClassSynthesizer(self._runtime, self.reflector, self.config)
        self._projector = InstanceProjector(self, self.reflector, self.synthesizer)
        self._extractor = Extractor(self, self.reflector)
        self.functions = FunctionBridge(
            self._runtime,
            resolve=lambda value, dest: self._extractor.resolve(value, dest),
        )
        logger.info("created environment %#x", id(self))
        for path in self.config.load_paths:
            self.load(path)

    def __enter__(self) -> "Environment":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._runtime.closed

    # Commands and evaluation

    def build(self, construct: str) -> None:
        self.guard_mutation("build")
        self._checked(self._runtime.build, construct)

    def eval(self, expression: str) -> EngineValue:
        """Evaluate an expression and return its single engine value.

        A failure inside a bridged function surfaces as ``CallbackError``;
        any other engine failure as ``ConstructionError``.
        """

        return self._checked(self._runtime.evaluate, expression)

    def extract_eval(self, expression: str, into: Any = Any) -> Any:
        return self._extractor.extract(self.eval(expression), into)

    def load(self, path: str | Path) -> None:
        self.guard_mutation("load")
        logger.info("loading constructs from %s", path)
        self._checked(self._runtime.load, path)

    def batch_star(self, path: str | Path) -> None:
        self.guard_mutation("batch_star")
        logger.info("batching commands from %s", path)
        self._checked(self._runtime.batch_star, path)

    def reset(self) -> None:
        self.guard_mutation("reset")
        self._checked(self._runtime.reset)
        self._data_epoch += 1

    def run(self, limit: Optional[int] = None) -> int:
        self.guard_mutation("run")
        return self._checked(self._runtime.run, limit)

    def clear(self) -> None:
        """Remove every construct; all outstanding handles become invalid."""

        self.guard_mutation("clear")
        self._runtime.clear()
        self._epoch += 1
        self._data_epoch += 1
        self.functions.restore()
        logger.info("cleared environment %#x", id(self))

    def close(self) -> None:
        if self.closed:
            return
        self._runtime.close()
        self._epoch += 1
        self._data_epoch += 1
        logger.info("closed environment %#x", id(self))

    # Host functions

    def define_function(self, func: Callable[..., Any], name: Optional[str] = None) -> CallableSignature:
        self.guard_mutation("define_function")
        return self.functions.register(func, name)

    # Host values

    def insert(self, value: object, name: Optional[str] = None) -> Instance:
        """Insert a dataclass or pydantic model as an instance, synthesizing classes as needed."""

        self.guard_mutation("insert")
        return self._projector.insert(value, name)

    def extract(self, source: Any, into: Any = Any) -> Any:
        return self._extractor.extract(source, into)

    def make_instance(self, command: str) -> Instance:
        self.guard_mutation("make_instance")
        value = self.eval(command)
        if isinstance(value, InstanceNameValue):
            return self.instance_handle(value.value)
        if isinstance(value, InstanceAddressValue):
            return value.instance
        raise ConstructionError("Engine did not create the instance", command=command)

    def assert_string(self, fact: str) -> Fact:
        self.guard_mutation("assert_string")
        value = self._checked(self._runtime.assert_string, fact)
        if not isinstance(value, FactAddressValue):
            raise ConstructionError("Engine did not assert the fact", command=fact)
        return value.fact

    # Lookups

    def facts(self) -> list[Fact]:
        value = self.eval("(get-fact-list)")
        items = value.items if isinstance(value, MultifieldValue) else ()
        return [item.fact for item in items if isinstance(item, FactAddressValue)]

    def templates(self) -> list[Template]:
        return [self.template_handle(name) for name in self._runtime.list_templates()]

    def find_template(self, name: str) -> Optional[Template]:
        if not is_safe_symbol(name):
            return None
        template = self.template_handle(name)
        return template if template.exists() else None

    def instances(self) -> list[Instance]:
        return self.instances_from(self.eval("(find-all-instances ((?i USER)) TRUE)"))

    def find_instance(self, name: str) -> Optional[Instance]:
        instance = self.instance_handle(name)
        return instance if instance.exists() else None

    def classes(self) -> list[Class]:
        return [self.class_handle(name) for name in self._runtime.list_classes()]

    def find_class(self, name: str) -> Optional[Class]:
        if not is_safe_symbol(name):
            return None
        cls = self.class_handle(name)
        return cls if cls.exists() else None

    # Handles and helpers used by collaborators

    def assert_command(self, command: str) -> Fact:
        self.guard_mutation("assert")
        value = self.eval(command)
        if not isinstance(value, FactAddressValue):
            raise ConstructionError("Engine did not assert the fact", command=command)
        return value.fact

    def instances_from(self, value: EngineValue) -> list[Instance]:
        items = value.items if isinstance(value, MultifieldValue) else (value,)
        instances: list[Instance] = []
        for item in items:
            if isinstance(item, InstanceAddressValue):
                instances.append(item.instance)
            elif isinstance(item, InstanceNameValue):
                instances.append(self.instance_handle(item.value))
        return instances

    def instance_handle(self, name: str) -> Instance:
        return Instance(self, name, self._data_epoch)

    def fact_handle(self, index: int) -> Fact:
        return Fact(self, index, self._data_epoch)

    def template_handle(self, name: str) -> Template:
        return Template(self, name, self._construct_epoch("template", name))

    def class_handle(self, name: str) -> Class:
        return Class(self, name, self._construct_epoch("class", name))

    def epoch_for(self, handle: object) -> Hashable:
        if isinstance(handle, (Instance, Fact)):
            return self._data_epoch
        if isinstance(handle, Template):
            return self._construct_epoch("template", handle.name)
        if isinstance(handle, Class):
            return self._construct_epoch("class", handle.name)
        return self._epoch

    def retire(self, kind: str, name: str) -> None:
        """Invalidate outstanding handles to an undefined template or class."""

        key = (kind, name)
        self._generations[key] = self._generations.get(key, 0) + 1

    def guard_mutation(self, operation: str) -> None:
        if self.closed:
            raise InvalidReferenceError("The engine environment has been closed.")
        if self.functions.depth > 0:
            raise CallbackError(f"{operation} cannot run while a bridged function is executing.")

    def _construct_epoch(self, kind: str, name: str) -> tuple[int, int]:
        return self._epoch, self._generations.get((kind, name), 0)

    def _checked(self, call: Callable[..., T], *args: Any) -> T:
        """Run one engine entry point and raise any bridged-function failure it parked."""

        try:
            result = call(*args)
        except ConstructionError as exc:
            pending = self.functions.take_error()
            if pending is not None:
                raise pending from exc
            raise
        pending = self.functions.take_error()
        if pending is not None:
            raise pending
        return result
