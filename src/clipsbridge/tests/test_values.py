import math
from typing import Any, Optional, Union
import unittest

from clipsbridge.errors import OutOfRangeError, PrecisionLossError, UnsupportedTypeError
from clipsbridge.values import (
    FALSE,
    NIL,
    TRUE,
    FloatValue,
    InstanceName,
    InstanceNameValue,
    Int8,
    IntegerValue,
    MultifieldValue,
    StringValue,
    Symbol,
    SymbolValue,
    UInt8,
    from_engine,
    render,
    to_engine,
    to_engine_typed,
)


class TestFromEngine(unittest.TestCase):
    def test_integral_float_narrows_to_int(self) -> None:
        value = from_engine(FloatValue(12.0), int)
        self.assertEqual(value, 12)
        self.assertIsInstance(value, int)

    def test_fractional_float_to_int_loses_precision(self) -> None:
        with self.assertRaises(PrecisionLossError):
            from_engine(FloatValue(12.5), int)

    def test_sized_int_bounds(self) -> None:
        self.assertEqual(from_engine(IntegerValue(100), Int8), 100)
        with self.assertRaises(OutOfRangeError):
            from_engine(IntegerValue(1000), Int8)
        with self.assertRaises(OutOfRangeError):
            from_engine(IntegerValue(-1), UInt8)

    def test_integer_widens_to_float(self) -> None:
        value = from_engine(IntegerValue(3), float)
        self.assertEqual(value, 3.0)
        self.assertIsInstance(value, float)

    def test_symbol_kind_is_kept_for_symbol_destination(self) -> None:
        value = from_engine(SymbolValue("red"), Symbol)
        self.assertIsInstance(value, Symbol)
        self.assertEqual(value, "red")
        plain = from_engine(SymbolValue("red"), str)
        self.assertIs(type(plain), str)
        with self.assertRaises(UnsupportedTypeError):
            from_engine(StringValue("red"), Symbol)

    def test_dynamic_destination(self) -> None:
        value = MultifieldValue((SymbolValue("a"), IntegerValue(1), StringValue("s"), NIL))
        self.assertEqual(from_engine(value), [Symbol("a"), 1, "s", None])
        self.assertIsInstance(from_engine(value)[0], Symbol)
        self.assertEqual(from_engine(InstanceNameValue("ada")), InstanceName("ada"))

    def test_typed_sequence_fails_as_a_whole(self) -> None:
        mixed = MultifieldValue((IntegerValue(1), StringValue("two")))
        with self.assertRaises(UnsupportedTypeError):
            from_engine(mixed, list[int])
        self.assertEqual(from_engine(MultifieldValue((IntegerValue(1), IntegerValue(2))), tuple[int, ...]), (1, 2))

    def test_optional_maps_nil_to_none(self) -> None:
        self.assertIsNone(from_engine(NIL, Optional[int]))
        self.assertEqual(from_engine(IntegerValue(4), Optional[int]), 4)

    def test_bool_destination(self) -> None:
        self.assertTrue(from_engine(TRUE, bool))
        self.assertFalse(from_engine(FALSE, bool))
        with self.assertRaises(UnsupportedTypeError):
            from_engine(IntegerValue(1), bool)

    def test_union_members_are_tried_in_order(self) -> None:
        self.assertEqual(from_engine(StringValue("x"), Union[int, str]), "x")
        self.assertEqual(from_engine(IntegerValue(2), Union[int, str]), 2)

    def test_unknown_destination_is_unsupported(self) -> None:
        with self.assertRaises(UnsupportedTypeError):
            from_engine(IntegerValue(1), complex)


class TestToEngine(unittest.TestCase):
    def test_runtime_types(self) -> None:
        self.assertEqual(to_engine(None), NIL)
        self.assertEqual(to_engine(True), TRUE)
        self.assertEqual(to_engine(7), IntegerValue(7))
        self.assertEqual(to_engine(Symbol("s")), SymbolValue("s"))
        self.assertEqual(to_engine("s"), StringValue("s"))
        self.assertEqual(
            to_engine([1, "a"]),
            MultifieldValue((IntegerValue(1), StringValue("a"))),
        )

    def test_integer_outside_int64(self) -> None:
        with self.assertRaises(OutOfRangeError):
            to_engine(1 << 70)

    def test_unknown_host_type(self) -> None:
        with self.assertRaises(UnsupportedTypeError):
            to_engine(object())

    def test_typed_conversion(self) -> None:
        self.assertEqual(to_engine_typed("red", Symbol), SymbolValue("red"))
        self.assertEqual(to_engine_typed(None, Optional[str]), NIL)
        self.assertEqual(to_engine_typed(3, float), FloatValue(3.0))
        with self.assertRaises(UnsupportedTypeError):
            to_engine_typed(None, int)
        with self.assertRaises(OutOfRangeError):
            to_engine_typed(300, UInt8)
        self.assertEqual(to_engine_typed(5, Any), IntegerValue(5))


class TestRender(unittest.TestCase):
    def test_literals(self) -> None:
        self.assertEqual(render(IntegerValue(-3)), "-3")
        self.assertEqual(render(FloatValue(2.5)), "2.5")
        self.assertEqual(render(StringValue('say "hi"')), '"say \\"hi\\""')
        self.assertEqual(render(SymbolValue("red")), "red")
        self.assertEqual(render(InstanceNameValue("ada")), "[ada]")

    def test_unsafe_symbols_are_built_at_runtime(self) -> None:
        self.assertEqual(render(SymbolValue("two words")), '(sym-cat "two words")')

    def test_multifield(self) -> None:
        value = MultifieldValue((IntegerValue(1), FloatValue(2.5), SymbolValue("abc")))
        self.assertEqual(render(value), "(create$ 1 2.5 abc)")

    def test_non_finite_float(self) -> None:
        with self.assertRaises(UnsupportedTypeError):
            render(FloatValue(math.inf))


if __name__ == "__main__":
    unittest.main()
