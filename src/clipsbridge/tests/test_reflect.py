from dataclasses import dataclass, field
from typing import Optional
import unittest

from pydantic import BaseModel, Field

from clipsbridge.errors import UnsupportedTypeError
from clipsbridge.reflect import TypeReflector
from clipsbridge.synth import render_defclass, render_slot
from clipsbridge.values import Symbol


@dataclass
class Address:
    street: str
    number: int = 0


@dataclass
class Person:
    full_name: str
    age: int = field(default=0, metadata={"json": "years"})
    nickname: Optional[str] = field(default=None, metadata={"clips": "alias", "json": "nick"})
    home: Optional[Address] = None
    tags: list[Symbol] = field(default_factory=list)
    active: bool = False


@dataclass
class TreeNode:
    label: str
    parent: Optional["TreeNode"] = None
    children: list["TreeNode"] = field(default_factory=list)


@dataclass
class Team:
    title: str
    lead: Optional["Member"] = None


@dataclass
class Member:
    handle: str
    team: Optional[Team] = None


@dataclass
class Renamed:
    __clips_class__ = "renamed-thing"

    size: int = 0


@dataclass
class ReservedSlot:
    name: str


@dataclass
class TaggedName:
    name: str = field(default="", metadata={"clips": "title"})


@dataclass
class Grid:
    rows: list[list[int]]


class Sensor(BaseModel):
    sensor_id: str = Field(alias="id")
    reading: float = Field(default=0.0, json_schema_extra={"clips": "value"})
    unit: Optional[str] = None


class TestTypeReflector(unittest.TestCase):
    def setUp(self) -> None:
        self.reflector = TypeReflector()

    def test_declaration_order_and_tag_priority(self) -> None:
        schema = self.reflector.reflect(Person)
        self.assertEqual(schema.name, "Person")
        self.assertEqual(
            [slot.name for slot in schema.slots],
            ["full_name", "years", "alias", "home", "tags", "active"],
        )
        self.assertEqual([slot.attr for slot in schema.slots][:3], ["full_name", "age", "nickname"])

    def test_slot_kinds(self) -> None:
        schema = self.reflector.reflect(Person)
        self.assertEqual(schema.slot("full_name").kind, "STRING")
        self.assertEqual(schema.slot("years").kind, "INTEGER")
        self.assertTrue(schema.slot("alias").optional)
        home = schema.slot("home")
        self.assertEqual(home.kind, "CLASS-REFERENCE")
        self.assertEqual(home.referenced_class, "Address")
        self.assertIs(home.referenced_type, Address)
        tags = schema.slot("tags")
        self.assertEqual((tags.kind, tags.cardinality), ("SYMBOL", "multi"))
        self.assertEqual(schema.slot("active").kind, "BOOLEAN")

    def test_memoized_by_type(self) -> None:
        self.assertIs(self.reflector.reflect(Person), self.reflector.reflect(Person))

    def test_self_reference(self) -> None:
        schema = self.reflector.reflect(TreeNode)
        self.assertEqual(schema.slot("parent").referenced_class, "TreeNode")
        children = schema.slot("children")
        self.assertTrue(children.multi)
        self.assertEqual(children.referenced_class, "TreeNode")

    def test_mutual_reference(self) -> None:
        team = self.reflector.reflect(Team)
        member = self.reflector.reflect(Member)
        self.assertEqual(team.slot("lead").referenced_class, "Member")
        self.assertEqual(member.slot("team").referenced_class, "Team")
        self.assertEqual(team.references(), [Member])

    def test_class_name_override(self) -> None:
        self.assertEqual(self.reflector.reflect(Renamed).name, "renamed-thing")

    def test_pydantic_alias_and_extra(self) -> None:
        schema = self.reflector.reflect(Sensor)
        self.assertEqual([slot.name for slot in schema.slots], ["id", "value", "unit"])
        self.assertEqual(schema.slot("value").kind, "FLOAT")
        self.assertTrue(schema.slot("unit").optional)

    def test_configured_tag_keys(self) -> None:
        reflector = TypeReflector(binding_tag="engine", serialization_tag="clips")
        schema = reflector.reflect(Person)
        self.assertEqual([slot.name for slot in schema.slots][:3], ["full_name", "age", "alias"])

    def test_rejected_shapes(self) -> None:
        with self.assertRaises(UnsupportedTypeError):
            self.reflector.reflect(ReservedSlot)
        self.assertEqual([slot.name for slot in self.reflector.reflect(TaggedName).slots], ["title"])
        with self.assertRaises(UnsupportedTypeError):
            self.reflector.reflect(Grid)
        with self.assertRaises(UnsupportedTypeError):
            self.reflector.fields(int)


class TestRenderDefclass(unittest.TestCase):
    def setUp(self) -> None:
        self.reflector = TypeReflector()

    def test_slot_facets(self) -> None:
        schema = self.reflector.reflect(Person)
        self.assertEqual(render_slot(schema.slot("full_name")), "(slot full_name (type STRING) (create-accessor read-write))")
        self.assertEqual(
            render_slot(schema.slot("alias")),
            "(slot alias (type STRING SYMBOL) (allowed-symbols nil) (default nil) (create-accessor read-write))",
        )
        self.assertEqual(
            render_slot(schema.slot("home")),
            "(slot home (type INSTANCE-NAME SYMBOL) (allowed-symbols nil) (allowed-classes Address)"
            " (default nil) (create-accessor read-write))",
        )
        self.assertEqual(render_slot(schema.slot("tags")), "(multislot tags (type SYMBOL) (create-accessor read-write))")
        self.assertEqual(
            render_slot(schema.slot("active")),
            "(slot active (type SYMBOL) (allowed-symbols TRUE FALSE) (default FALSE) (create-accessor read-write))",
        )

    def test_defclass_header(self) -> None:
        text = render_defclass(self.reflector.reflect(Address), superclass="USER", pattern_match="non-reactive")
        self.assertTrue(text.startswith("(defclass Address\n  (is-a USER)\n  (role concrete)\n  (pattern-match non-reactive)"))
        self.assertIn("(slot number (type INTEGER) (create-accessor read-write))", text)
        self.assertTrue(text.endswith(")"))

    def test_forward_references_drop_class_constraint(self) -> None:
        schema = self.reflector.reflect(TreeNode)
        self.assertIn("(allowed-classes TreeNode)", render_defclass(schema))
        self.assertNotIn("allowed-classes", render_defclass(schema, forward=["TreeNode"]))


if __name__ == "__main__":
    unittest.main()
