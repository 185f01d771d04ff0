from dataclasses import dataclass, field
from typing import Optional
import unittest

from pydantic import BaseModel, Field

from clipsbridge import BridgeConfig, Environment
from clipsbridge.errors import SchemaMismatchError, UnsupportedTypeError
from clipsbridge.values import NIL, InstanceNameValue, IntegerValue, StringValue, Symbol


@dataclass
class Address:
    street: str
    number: int = 0


@dataclass
class Person:
    full_name: str
    age: int = field(default=0, metadata={"json": "years"})
    nickname: Optional[str] = field(default=None, metadata={"clips": "alias"})
    home: Optional[Address] = None
    tags: list[Symbol] = field(default_factory=list)


@dataclass
class ChildClass:
    label: str
    intval: Optional[int] = None


@dataclass
class ParentClass:
    title: str
    child: Optional[ChildClass] = None
    children: list[ChildClass] = field(default_factory=list)


@dataclass
class TreeNode:
    label: str
    parent: Optional["TreeNode"] = None
    children: list["TreeNode"] = field(default_factory=list)


class Sensor(BaseModel):
    sensor_id: str = Field(alias="id")
    reading: float = Field(default=0.0, json_schema_extra={"clips": "value"})


class TestInsertExtract(unittest.TestCase):
    def setUp(self) -> None:
        self.env = Environment()

    def tearDown(self) -> None:
        self.env.close()

    def test_round_trip(self) -> None:
        person = Person(full_name="Ada", age=36, home=Address("Main", 5), tags=[Symbol("x"), Symbol("y")])
        instance = self.env.insert(person, name="ada")

        self.assertEqual(instance.name, "ada")
        self.assertEqual(instance.slot("full_name"), StringValue("Ada"))
        self.assertEqual(instance.slot("years"), IntegerValue(36))
        self.assertEqual(instance.slot("alias"), NIL)
        self.assertIsInstance(instance.slot("home"), InstanceNameValue)

        extracted = self.env.extract(instance, Person)
        self.assertEqual(extracted, person)
        self.assertIsInstance(extracted.tags[0], Symbol)

    def test_insert_synthesizes_classes_once(self) -> None:
        self.env.insert(Person(full_name="a", home=Address("x")))
        self.assertIsNotNone(self.env.find_class("Person"))
        self.assertIsNotNone(self.env.find_class("Address"))
        self.assertEqual(self.env.synthesizer.synthesize(Person), [])
        self.env.insert(Person(full_name="b"))
        names = sorted(self.env.extract(item)["full_name"] for item in self.env.find_class("Person").instances())
        self.assertEqual(names, ["a", "b"])

    def test_nested_structs_become_instances(self) -> None:
        parent = ParentClass(
            title="top",
            child=ChildClass("only", intval=9),
            children=[ChildClass("first"), ChildClass("second")],
        )
        instance = self.env.insert(parent)

        child_class = self.env.find_class("ChildClass")
        self.assertEqual(len(child_class.instances()), 3)
        reference = instance.slot("child")
        self.assertIsInstance(reference, InstanceNameValue)
        self.assertEqual(self.env.find_instance(reference.value).slot("label"), StringValue("only"))

        extracted = self.env.extract(instance, ParentClass)
        self.assertEqual(extracted, parent)

    def test_shared_value_maps_to_one_instance(self) -> None:
        shared = ChildClass("shared")
        instance = self.env.insert(ParentClass(title="p", child=shared, children=[shared]))
        self.assertEqual(len(self.env.find_class("ChildClass").instances()), 1)
        extracted = self.env.extract(instance, ParentClass)
        self.assertIs(extracted.child, extracted.children[0])

    def test_cyclic_graph(self) -> None:
        root = TreeNode("root")
        leaf = TreeNode("leaf", parent=root)
        root.children.append(leaf)

        instance = self.env.insert(root)
        self.assertEqual(len(self.env.find_class("TreeNode").instances()), 2)

        extracted = self.env.extract(instance, TreeNode)
        self.assertEqual(extracted.label, "root")
        self.assertIsNone(extracted.parent)
        self.assertEqual(len(extracted.children), 1)
        self.assertEqual(extracted.children[0].label, "leaf")
        self.assertIs(extracted.children[0].parent, extracted)

    def test_missing_slots_keep_defaults(self) -> None:
        self.env.build('(defclass Partial (is-a USER) (role concrete) (slot full_name (type STRING)))')
        instance = self.env.make_instance('(make-instance [p1] of Partial (full_name "x"))')
        self.assertEqual(self.env.extract(instance, Person), Person(full_name="x"))

    def test_extract_into_mapping(self) -> None:
        instance = self.env.insert(Address("Main", 5))
        self.assertEqual(self.env.extract(instance), {"street": "Main", "number": 5})
        self.assertEqual(instance.extract(dict[str, str | int]), {"street": "Main", "number": 5})

    def test_extract_into_existing_object(self) -> None:
        instance = self.env.insert(Address("Main", 5))
        target = Address("old", 1)
        self.assertIs(self.env.extract(instance, target), target)
        self.assertEqual(target, Address("Main", 5))
        mapping = {"extra": 1}
        self.env.extract(instance, mapping)
        self.assertEqual(mapping, {"extra": 1, "street": "Main", "number": 5})

    def test_pydantic_model(self) -> None:
        instance = self.env.insert(Sensor(id="s1", reading=2.5))
        self.assertEqual(instance.slot("id"), StringValue("s1"))
        extracted = self.env.extract(instance, Sensor)
        self.assertEqual((extracted.sensor_id, extracted.reading), ("s1", 2.5))

    def test_existing_class_must_match(self) -> None:
        self.env.build("(defclass Address (is-a USER) (role concrete) (slot street))")
        with self.assertRaises(SchemaMismatchError):
            self.env.insert(Address("Main", 5))

    def test_no_synthesis_when_disabled(self) -> None:
        env = Environment(BridgeConfig(auto_synthesize=False))
        try:
            with self.assertRaises(SchemaMismatchError):
                env.insert(Address("Main"))
        finally:
            env.close()

    def test_only_structs_insert(self) -> None:
        with self.assertRaises(UnsupportedTypeError):
            self.env.insert({"street": "Main"})

    def test_extract_eval(self) -> None:
        self.assertEqual(self.env.extract_eval("(create$ 1 2 3)", list[int]), [1, 2, 3])
        self.assertEqual(self.env.extract_eval("(+ 1 2)"), 3)


if __name__ == "__main__":
    unittest.main()
