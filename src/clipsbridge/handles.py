"""Weak handles onto engine constructs.

A handle is the pair (environment epoch, engine key): an instance name, a
fact index, a template or class name. Handles hold no slot values; every
accessor asks the engine again and raises ``InvalidReferenceError`` when the
construct is gone, the environment was cleared, or it was closed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Hashable, Iterable, Optional

from clipsbridge.errors import (
    ConstructionError,
    InvalidReferenceError,
    SchemaMismatchError,
    UnsupportedTypeError,
)
from clipsbridge.values import (
    FALSE,
    EngineValue,
    FactAddressValue,
    InstanceNameValue,
    MultifieldValue,
    SymbolValue,
    is_safe_symbol,
    render,
    to_engine,
)

if TYPE_CHECKING:
    from clipsbridge.environment import Environment


def _symbol(name: str, what: str) -> str:
    if not isinstance(name, str) or not is_safe_symbol(name):
        raise UnsupportedTypeError(f"{what} {name!r} is not a valid engine symbol.")
    return name


def _lexemes(value: EngineValue) -> tuple[str, ...]:
    if isinstance(value, MultifieldValue):
        return tuple(str(getattr(item, "value", item)) for item in value.items)
    if value == FALSE:
        return ()
    return (str(getattr(value, "value", value)),)


class _Handle:
    __slots__ = ("_env", "_epoch")

    def __init__(self, env: "Environment", epoch: Hashable) -> None:
        self._env = env
        self._epoch = epoch

    @property
    def environment(self) -> "Environment":
        return self._env

    def _current(self) -> bool:
        return not self._env.closed and self._env.epoch_for(self) == self._epoch

    def _eval(self, expression: str) -> EngineValue:
        return self._env.eval(expression)

    def _is_true(self, expression: str) -> bool:
        value = self._eval(expression)
        return not (isinstance(value, SymbolValue) and value.value in ("FALSE", "nil"))


class Instance(_Handle):
    """Handle to an instance of a user-defined class."""

    __slots__ = ("_name",)

    def __init__(self, env: "Environment", name: str, epoch: int) -> None:
        super().__init__(env, epoch)
        self._name = str(name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def ref(self) -> str:
        return render(InstanceNameValue(self._name))

    def __repr__(self) -> str:
        return f"Instance([{self._name}])"

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Instance)
            and other._env is self._env
            and other._epoch == self._epoch
            and other._name == self._name
        )

    def __hash__(self) -> int:
        return hash(("instance", id(self._env), self._epoch, self._name))

    def exists(self) -> bool:
        return self._current() and self._is_true(f"(instance-existp {self.ref})")

    def check(self) -> None:
        if not self.exists():
            raise InvalidReferenceError(f"Instance [{self._name}] no longer exists.")

    @property
    def instance_class(self) -> "Class":
        self.check()
        value = self._eval(f"(class {self.ref})")
        return self._env.class_handle(str(value.value))

    def slot_names(self) -> list[str]:
        self.check()
        class_name = self._eval(f"(class {self.ref})").value
        return list(_lexemes(self._eval(f"(class-slots {class_name} inherit)")))

    def slots(self) -> dict[str, EngineValue]:
        return {name: self.slot(name) for name in self.slot_names()}

    def slot(self, name: str) -> EngineValue:
        self.check()
        return self._eval(f"(send {self.ref} get-{_symbol(name, 'Slot')})")

    def set_slot(self, name: str, value: Any) -> None:
        self.check()
        self._env.guard_mutation("set_slot")
        self._eval(f"(send {self.ref} put-{_symbol(name, 'Slot')} {render(to_engine(value))})")

    def send(self, message: str, *args: Any) -> EngineValue:
        self.check()
        rendered = "".join(" " + render(to_engine(arg)) for arg in args)
        return self._eval(f"(send {self.ref} {_symbol(message, 'Message')}{rendered})")

    def delete(self) -> None:
        """Delete through the ``delete`` message handler."""

        self.check()
        self._env.guard_mutation("delete")
        if not self._is_true(f"(send {self.ref} delete)"):
            raise ConstructionError(f"Engine refused to delete [{self._name}]")

    def unmake(self) -> None:
        self.check()
        self._env.guard_mutation("unmake")
        if not self._is_true(f"(unmake-instance {self.ref})"):
            raise ConstructionError(f"Engine refused to unmake [{self._name}]")

    def extract(self, into: Any = dict) -> Any:
        return self._env.extract(self, into)


class Fact(_Handle):
    """Handle to an asserted fact, keyed by fact index."""

    __slots__ = ("_index",)

    def __init__(self, env: "Environment", index: int, epoch: int) -> None:
        super().__init__(env, epoch)
        self._index = int(index)

    @property
    def index(self) -> int:
        return self._index

    def __repr__(self) -> str:
        return f"Fact(f-{self._index})"

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Fact)
            and other._env is self._env
            and other._epoch == self._epoch
            and other._index == self._index
        )

    def __hash__(self) -> int:
        return hash(("fact", id(self._env), self._epoch, self._index))

    def exists(self) -> bool:
        return self._current() and self._is_true(f"(fact-existp {self._index})")

    def check(self) -> None:
        if not self.exists():
            raise InvalidReferenceError(f"Fact f-{self._index} no longer exists.")

    @property
    def template(self) -> "Template":
        self.check()
        return self._env.template_handle(str(self._eval(f"(fact-relation {self._index})").value))

    @property
    def implied(self) -> bool:
        """Whether this is an ordered fact."""

        return self.slot_names() == ["implied"]

    def slot_names(self) -> list[str]:
        self.check()
        return list(_lexemes(self._eval(f"(fact-slot-names {self._index})")))

    def slot(self, name: str) -> EngineValue:
        self.check()
        return self._eval(f"(fact-slot-value {self._index} {_symbol(name, 'Slot')})")

    def values(self) -> list[EngineValue]:
        """Positional values of an ordered fact."""

        if not self.implied:
            raise SchemaMismatchError(f"Fact f-{self._index} is not an ordered fact.")
        value = self.slot("implied")
        if isinstance(value, MultifieldValue):
            return list(value.items)
        return [value]

    def slots(self) -> list[EngineValue] | dict[str, EngineValue]:
        names = self.slot_names()
        if names == ["implied"]:
            return self.values()
        return {name: self.slot(name) for name in names}

    def retract(self) -> None:
        self.check()
        self._env.guard_mutation("retract")
        self._eval(f"(retract {self._index})")

    def modify(self, **slots: Any) -> "Fact":
        """Retract this template fact and assert it again with new slot values.

        Returns the new fact; this handle no longer refers to anything.
        """

        self.check()
        self._env.guard_mutation("modify")
        if self.implied:
            raise SchemaMismatchError("Ordered facts cannot be modified; assert a new fact.")
        changes = "".join(
            f" ({_symbol(key, 'Slot')} {render(to_engine(value))})" for key, value in slots.items()
        )
        value = self._eval(f"(modify {self._index}{changes})")
        if not isinstance(value, FactAddressValue):
            raise ConstructionError(f"Engine refused to modify f-{self._index}")
        return value.fact

    def extract(self, into: Any = Any) -> Any:
        return self._env.extract(self, into)


class FactBuilder:
    """A pending fact. Edits stay on the host until ``assert_fact`` publishes them."""

    def __init__(self, template: "Template") -> None:
        self._template = template
        self._implied = template.implied
        self._values: list[EngineValue] = []
        self._slots: dict[str, EngineValue] = {}
        self._asserted: Optional[Fact] = None

    @property
    def template(self) -> "Template":
        return self._template

    @property
    def asserted(self) -> Optional[Fact]:
        return self._asserted

    def append(self, value: Any) -> "FactBuilder":
        self._editable(ordered=True)
        self._values.append(to_engine(value))
        return self

    def extend(self, values: Iterable[Any]) -> "FactBuilder":
        self._editable(ordered=True)
        self._values.extend(to_engine(value) for value in values)
        return self

    def set(self, key: int | str, value: Any) -> "FactBuilder":
        if self._implied:
            self._editable(ordered=True)
            if not isinstance(key, int):
                raise SchemaMismatchError("Ordered facts are indexed by position.")
            self._values[key] = to_engine(value)
        else:
            self._editable(ordered=False)
            self._slots[_symbol(str(key), "Slot")] = to_engine(value)
        return self

    def update(self, **slots: Any) -> "FactBuilder":
        for key, value in slots.items():
            self.set(key, value)
        return self

    def render(self) -> str:
        if self._implied:
            body = "".join(" " + render(value) for value in self._values)
        else:
            body = "".join(f" ({key} {render(value)})" for key, value in self._slots.items())
        return f"(assert ({self._template.name}{body}))"

    def assert_fact(self) -> Fact:
        if self._asserted is not None:
            raise InvalidReferenceError("Fact was already asserted.")
        self._template.check()
        self._asserted = self._template.environment.assert_command(self.render())
        return self._asserted

    def _editable(self, *, ordered: bool) -> None:
        if self._asserted is not None:
            raise InvalidReferenceError("Fact was already asserted; build a new one.")
        if ordered != self._implied:
            kind = "ordered" if self._implied else "template"
            raise SchemaMismatchError(f"Template {self._template.name} builds {kind} facts.")


class Template(_Handle):
    """Handle to a deftemplate, including implied templates of ordered facts."""

    __slots__ = ("_name",)

    def __init__(self, env: "Environment", name: str, epoch: Hashable) -> None:
        super().__init__(env, epoch)
        self._name = _symbol(name, "Template")

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"Template({self._name})"

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Template)
            and other._env is self._env
            and other._epoch == self._epoch
            and other._name == self._name
        )

    def __hash__(self) -> int:
        return hash(("template", id(self._env), self._epoch, self._name))

    def exists(self) -> bool:
        if not self._current():
            return False
        if self._is_true(f"(member$ {self._name} (get-deftemplate-list))"):
            return True
        try:
            return self._eval(f"(deftemplate-slot-names {self._name})") != FALSE
        except ConstructionError:
            return False

    def check(self) -> None:
        if not self.exists():
            raise InvalidReferenceError(f"Template {self._name} no longer exists.")

    @property
    def implied(self) -> bool:
        self.check()
        return _lexemes(self._eval(f"(deftemplate-slot-names {self._name})")) == ("implied",)

    def slots(self) -> list["TemplateSlot"]:
        if self.implied:
            return []
        names = _lexemes(self._eval(f"(deftemplate-slot-names {self._name})"))
        return [TemplateSlot(self, name) for name in names]

    def facts(self) -> list[Fact]:
        self.check()
        return [fact for fact in self._env.facts() if fact.template.name == self._name]

    def new_fact(self) -> FactBuilder:
        self.check()
        return FactBuilder(self)

    def undefine(self) -> None:
        self.check()
        self._env.guard_mutation("undefine")
        self._eval(f"(undeftemplate {self._name})")
        if self.exists():
            raise ConstructionError(f"Engine refused to undefine template {self._name}")
        self._env.retire("template", self._name)


class TemplateSlot:
    """One slot of a template; every property queries the engine."""

    def __init__(self, template: Template, name: str) -> None:
        self._template = template
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"TemplateSlot({self._template.name}.{self._name})"

    def _query(self, function: str) -> EngineValue:
        self._template.check()
        return self._template._eval(f"({function} {self._template.name} {self._name})")

    @property
    def multifield(self) -> bool:
        return self._query("deftemplate-slot-multip") != FALSE

    @property
    def types(self) -> tuple[str, ...]:
        return _lexemes(self._query("deftemplate-slot-types"))

    @property
    def default_value(self) -> EngineValue:
        return self._query("deftemplate-slot-default-value")

    @property
    def allowed_values(self) -> EngineValue:
        return self._query("deftemplate-slot-allowed-values")

    @property
    def range(self) -> EngineValue:
        return self._query("deftemplate-slot-range")

    @property
    def cardinality(self) -> EngineValue:
        return self._query("deftemplate-slot-cardinality")


class Class(_Handle):
    """Handle to a defclass."""

    __slots__ = ("_name",)

    def __init__(self, env: "Environment", name: str, epoch: Hashable) -> None:
        super().__init__(env, epoch)
        self._name = _symbol(name, "Class")

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"Class({self._name})"

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Class)
            and other._env is self._env
            and other._epoch == self._epoch
            and other._name == self._name
        )

    def __hash__(self) -> int:
        return hash(("class", id(self._env), self._epoch, self._name))

    def exists(self) -> bool:
        return self._current() and self._is_true(f"(class-existp {self._name})")

    def check(self) -> None:
        if not self.exists():
            raise InvalidReferenceError(f"Class {self._name} no longer exists.")

    @property
    def abstract(self) -> bool:
        self.check()
        return self._is_true(f"(class-abstractp {self._name})")

    @property
    def reactive(self) -> bool:
        self.check()
        return self._is_true(f"(class-reactivep {self._name})")

    def superclasses(self) -> list["Class"]:
        self.check()
        names = _lexemes(self._eval(f"(class-superclasses {self._name})"))
        return [self._env.class_handle(name) for name in names]

    def subclasses(self) -> list["Class"]:
        self.check()
        names = _lexemes(self._eval(f"(class-subclasses {self._name})"))
        return [self._env.class_handle(name) for name in names]

    def slots(self) -> list["ClassSlot"]:
        self.check()
        names = _lexemes(self._eval(f"(class-slots {self._name} inherit)"))
        return [ClassSlot(self, name) for name in names]

    def instances(self) -> list[Instance]:
        self.check()
        value = self._eval(f"(find-all-instances ((?i {self._name})) TRUE)")
        return self._env.instances_from(value)

    def new_instance(self, name: Optional[str] = None, **slots: Any) -> Instance:
        self.check()
        target = render(InstanceNameValue(name)) + " " if name is not None else ""
        overrides = "".join(
            f" ({_symbol(key, 'Slot')} {render(to_engine(value))})" for key, value in slots.items()
        )
        return self._env.make_instance(f"(make-instance {target}of {self._name}{overrides})")

    def undefine(self) -> None:
        self.check()
        self._env.guard_mutation("undefine")
        self._eval(f"(undefclass {self._name})")
        if self.exists():
            raise ConstructionError(f"Engine refused to undefine class {self._name}")
        self._env.retire("class", self._name)


class ClassSlot:
    """One slot of a class; every property queries the engine."""

    def __init__(self, owner: Class, name: str) -> None:
        self._owner = owner
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"ClassSlot({self._owner.name}.{self._name})"

    def _query(self, function: str) -> EngineValue:
        self._owner.check()
        return self._owner._eval(f"({function} {self._owner.name} {self._name})")

    @property
    def multifield(self) -> bool:
        facets = _lexemes(self._query("slot-facets"))
        return bool(facets) and facets[0] == "MLT"

    @property
    def types(self) -> tuple[str, ...]:
        return _lexemes(self._query("slot-types"))

    @property
    def allowed_classes(self) -> tuple[str, ...]:
        return _lexemes(self._query("slot-allowed-classes"))

    @property
    def default_value(self) -> EngineValue:
        return self._query("slot-default-value")

    @property
    def allowed_values(self) -> EngineValue:
        return self._query("slot-allowed-values")

    @property
    def range(self) -> EngineValue:
        return self._query("slot-range")

    @property
    def cardinality(self) -> EngineValue:
        return self._query("slot-cardinality")

    @property
    def writable(self) -> bool:
        return self._owner._is_true(f"(slot-writablep {self._owner.name} {self._name})")
