from dataclasses import dataclass
from typing import Any, Optional
import unittest

from clipsbridge import Environment
from clipsbridge.errors import CallbackError, UnsupportedTypeError
from clipsbridge.functions import CallableSignature
from clipsbridge.handles import Instance
from clipsbridge.values import (
    NIL,
    FloatValue,
    Int8,
    IntegerValue,
    MultifieldValue,
    StringValue,
    Symbol,
    SymbolValue,
)


@dataclass
class Account:
    owner: str
    balance: int = 0


CALLS: list[tuple[Any, ...]] = []


def collect(a: int, b: float, *rest: Symbol) -> int:
    CALLS.append((a, b, rest))
    return len(rest)


def divide(a: int, b: int) -> tuple[float, Optional[ZeroDivisionError]]:
    if b == 0:
        return 0.0, ZeroDivisionError("division by zero")
    return a / b, None


def bounds(*values: int) -> tuple[int, int]:
    return min(values), max(values)


def echo(value: Any) -> Any:
    return value


def nothing() -> None:
    return None


def explode(reason: str) -> str:
    raise RuntimeError(reason)


def soft_fail() -> Exception:
    return ValueError("soft")


def owner_of(account: Account) -> str:
    return account.owner


def instance_name(target: Instance) -> Symbol:
    return Symbol(target.name)


def greet(name: str, punctuation: str = "!") -> str:
    return f"hello {name}{punctuation}"


def shout(text: str) -> Symbol:
    return text.upper()


def overflow() -> Int8:
    return 1000


def labels(count: int) -> tuple[Symbol, ...]:
    return tuple(f"l{index}" for index in range(count))


def boom() -> None:
    raise RuntimeError("rule side failure")


class TestCallableSignature(unittest.TestCase):
    def test_inspect(self) -> None:
        signature = CallableSignature.inspect("collect", collect)
        self.assertEqual(signature.params, (int, float))
        self.assertEqual(signature.required, 2)
        self.assertIs(signature.variadic, Symbol)
        self.assertFalse(signature.error_terminal)
        self.assertTrue(signature.accepts(5))
        self.assertFalse(signature.accepts(1))

    def test_error_terminal(self) -> None:
        self.assertTrue(CallableSignature.inspect("divide", divide).error_terminal)
        self.assertFalse(CallableSignature.inspect("bounds", bounds).error_terminal)

    def test_defaults(self) -> None:
        signature = CallableSignature.inspect("greet", greet)
        self.assertEqual(signature.required, 1)
        self.assertTrue(signature.accepts(2))
        self.assertFalse(signature.accepts(3))


class TestFunctionBridge(unittest.TestCase):
    def setUp(self) -> None:
        CALLS.clear()
        self.env = Environment()
        for func in (collect, divide, bounds, echo, nothing, explode, soft_fail, owner_of, instance_name, greet):
            self.env.define_function(func)

    def tearDown(self) -> None:
        self.env.close()

    def test_variadic_arguments(self) -> None:
        self.assertEqual(self.env.eval("(collect 1 2 x y)"), IntegerValue(2))
        a, b, rest = CALLS[0]
        self.assertEqual((a, b), (1, 2.0))
        self.assertIsInstance(b, float)
        self.assertEqual(rest, (Symbol("x"), Symbol("y")))
        self.assertIsInstance(rest[0], Symbol)

    def test_bad_argument_never_invokes(self) -> None:
        with self.assertRaises(CallbackError) as ctx:
            self.env.eval('(collect "nope" 2)')
        self.assertEqual(ctx.exception.function, "collect")
        self.assertEqual(CALLS, [])
        with self.assertRaises(CallbackError):
            self.env.eval("(collect 1 2 \"not-a-symbol\")")
        with self.assertRaises(CallbackError):
            self.env.eval("(collect 1.5 2)")
        self.assertEqual(CALLS, [])

    def test_arity(self) -> None:
        with self.assertRaises(CallbackError):
            self.env.eval("(collect 1)")
        self.assertEqual(self.env.eval('(greet "ada")'), StringValue("hello ada!"))
        self.assertEqual(self.env.eval('(greet "ada" "?")'), StringValue("hello ada?"))

    def test_error_terminal(self) -> None:
        self.assertEqual(self.env.eval("(divide 6 3)"), FloatValue(2.0))
        with self.assertRaises(CallbackError) as ctx:
            self.env.eval("(divide 1 0)")
        self.assertIn("division by zero", str(ctx.exception))

    def test_return_shapes(self) -> None:
        self.assertEqual(
            self.env.eval("(bounds 4 9 1)"),
            MultifieldValue((IntegerValue(1), IntegerValue(9))),
        )
        self.assertEqual(self.env.eval("(nothing)"), NIL)
        self.assertEqual(self.env.eval("(echo abc)"), SymbolValue("abc"))
        self.assertEqual(self.env.eval('(echo "abc")'), StringValue("abc"))

    def test_declared_return_types(self) -> None:
        for func in (shout, overflow, labels):
            self.env.define_function(func)
        self.assertEqual(self.env.eval('(shout "go")'), SymbolValue("GO"))
        self.assertEqual(self.env.eval("(labels 2)"), MultifieldValue((SymbolValue("l0"), SymbolValue("l1"))))
        with self.assertRaises(CallbackError) as ctx:
            self.env.eval("(overflow)")
        self.assertEqual(ctx.exception.function, "overflow")
        self.assertEqual(self.env.eval("(+ 1 1)"), IntegerValue(2))

    def test_failure_inside_rule_surfaces_from_run(self) -> None:
        self.env.define_function(boom)
        self.env.build("(defrule fire-boom (go) => (boom))")
        self.env.assert_string("(go)")
        with self.assertRaises(CallbackError) as ctx:
            self.env.run()
        self.assertEqual(ctx.exception.function, "boom")
        self.assertEqual(self.env.eval("(+ 1 1)"), IntegerValue(2))

    def test_failures(self) -> None:
        with self.assertRaises(CallbackError) as ctx:
            self.env.eval('(explode "boom")')
        self.assertEqual(ctx.exception.function, "explode")
        with self.assertRaises(CallbackError):
            self.env.eval("(soft_fail)")
        # A failure is reported once, not carried into the next evaluation.
        self.assertEqual(self.env.eval("(+ 1 1)"), IntegerValue(2))

    def test_struct_and_handle_parameters(self) -> None:
        instance = self.env.insert(Account(owner="ada", balance=3), name="acct")
        self.assertEqual(self.env.eval("(owner_of [acct])"), StringValue("ada"))
        self.assertEqual(self.env.eval("(instance_name [acct])"), SymbolValue(instance.name))

    def test_mutation_from_callback_is_rejected(self) -> None:
        env = self.env

        def sneaky() -> None:
            env.build("(deftemplate sneaky (slot x))")

        env.define_function(sneaky)
        with self.assertRaises(CallbackError):
            env.eval("(sneaky)")
        self.assertIsNone(env.find_template("sneaky"))

    def test_functions_survive_clear(self) -> None:
        self.env.clear()
        self.assertEqual(self.env.eval("(collect 1 2)"), IntegerValue(0))

    def test_invalid_name(self) -> None:
        with self.assertRaises(UnsupportedTypeError):
            self.env.define_function(collect, name="two words")


if __name__ == "__main__":
    unittest.main()
