"""Function bridge: host callables invoked from engine expressions."""

from __future__ import annotations

from dataclasses import dataclass
import inspect
import logging
import typing
from typing import TYPE_CHECKING, Any, Callable, Optional

from clipsbridge.errors import BridgeError, CallbackError, UnsupportedTypeError
from clipsbridge.values import (
    NIL,
    EngineValue,
    MultifieldValue,
    Resolver,
    from_engine,
    is_safe_symbol,
    to_engine_typed,
    unwrap_optional,
)

if TYPE_CHECKING:
    from clipsbridge.runtime import ClipsRuntime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallableSignature:
    """Parameter and return kinds of a bridged callable, read once at registration.

    Attributes:
        name: Engine-visible function name.
        params: Declared types of the positional parameters.
        required: How many positional parameters have no default.
        variadic: Element type of ``*args``, or None when there is none.
        returns: Declared return type.
        error_terminal: Whether the last element of a returned tuple is an
            error signal rather than a value.
    """

    name: str
    params: tuple[Any, ...]
    required: int
    variadic: Optional[Any]
    returns: Any
    error_terminal: bool

    @classmethod
    def inspect(cls, name: str, func: Callable[..., Any]) -> "CallableSignature":
        try:
            signature = inspect.signature(func)
        except (TypeError, ValueError) as exc:
            raise UnsupportedTypeError(f"Cannot inspect the signature of {name}.") from exc
        try:
            hints = typing.get_type_hints(func)
        except (NameError, TypeError) as exc:
            raise UnsupportedTypeError(f"Cannot resolve annotations of {name}: {exc}") from exc

        params: list[Any] = []
        required = 0
        variadic: Optional[Any] = None
        for param in signature.parameters.values():
            hint = hints.get(param.name, Any)
            if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
                params.append(hint)
                if param.default is param.empty:
                    required += 1
            elif param.kind is param.VAR_POSITIONAL:
                variadic = hint
            elif param.kind is param.KEYWORD_ONLY and param.default is param.empty:
                raise UnsupportedTypeError(f"{name}: keyword-only parameter {param.name} has no default.")
        returns = hints.get("return", Any)
        return cls(
            name=name,
            params=tuple(params),
            required=required,
            variadic=variadic,
            returns=returns,
            error_terminal=_has_error_terminal(returns),
        )

    def accepts(self, count: int) -> bool:
        if count < self.required:
            return False
        return self.variadic is not None or count <= len(self.params)


class FunctionBridge:
    """Registers host callables with the engine and adapts each call.

    Arguments are coerced to the declared parameter types before the callable
    runs, so a coercion failure never leaves a half-applied call behind. Any
    failure is kept as ``pending_error`` until the environment that drove the
    evaluation picks it up with ``take_error``.
    """

    def __init__(self, runtime: "ClipsRuntime", *, resolve: Optional[Resolver] = None) -> None:
        self._runtime = runtime
        self._resolve = resolve
        self._functions: dict[str, tuple[CallableSignature, Callable[..., Any]]] = {}
        self._pending: Optional[CallbackError] = None
        self.depth = 0

    def register(self, func: Callable[..., Any], name: Optional[str] = None) -> CallableSignature:
        name = name or getattr(func, "__name__", None)
        if not name or not is_safe_symbol(name):
            raise UnsupportedTypeError(f"{name!r} is not a valid engine function name.")
        signature = CallableSignature.inspect(name, func)
        trampoline = self._trampoline(signature, func)
        self._runtime.register_callable(name, trampoline)
        self._functions[name] = (signature, trampoline)
        logger.debug("registered function %s (%d params, variadic=%s)", name, len(signature.params), signature.variadic is not None)
        return signature

    def signature(self, name: str) -> Optional[CallableSignature]:
        entry = self._functions.get(name)
        return entry[0] if entry else None

    def names(self) -> list[str]:
        return list(self._functions)

    def restore(self) -> None:
        """Re-register functions the engine no longer knows, e.g. after a clear."""

        for name, (_, trampoline) in self._functions.items():
            if not self._runtime.is_function(name):
                self._runtime.register_callable(name, trampoline)

    def take_error(self) -> Optional[CallbackError]:
        error, self._pending = self._pending, None
        return error

    def coerce(self, signature: CallableSignature, args: tuple[EngineValue, ...]) -> list[Any]:
        """Convert every call-site argument, failing before anything is invoked."""

        if not signature.accepts(len(args)):
            raise CallbackError(
                f"{signature.name} takes {signature.required}..{len(signature.params)}"
                f"{'+' if signature.variadic is not None else ''} arguments, got {len(args)}.",
                function=signature.name,
            )
        converted: list[Any] = []
        for position, value in enumerate(args):
            hint = signature.params[position] if position < len(signature.params) else signature.variadic
            try:
                converted.append(from_engine(value, hint, resolve=self._resolve))
            except BridgeError as exc:
                raise CallbackError(
                    f"{signature.name}: argument {position + 1} ({value.kind}): {exc}",
                    function=signature.name,
                ) from exc
        return converted

    def result(self, signature: CallableSignature, returned: Any) -> EngineValue:
        """Apply the return-value convention to what the callable returned."""

        if isinstance(returned, BaseException):
            raise CallbackError(f"{signature.name} failed: {returned}", function=signature.name) from returned
        if isinstance(returned, tuple):
            values = list(returned)
            if signature.error_terminal:
                if not values:
                    raise CallbackError(f"{signature.name} returned no error slot.", function=signature.name)
                error = values.pop()
                if error is not None:
                    raise CallbackError(f"{signature.name} failed: {error}", function=signature.name)
        elif returned is None:
            values = []
        else:
            values = [returned]
        hints = _return_hints(signature, len(values))
        try:
            if not values:
                return NIL
            if len(values) == 1:
                return to_engine_typed(values[0], hints[0])
            return MultifieldValue(tuple(to_engine_typed(value, hint) for value, hint in zip(values, hints)))
        except BridgeError as exc:
            raise CallbackError(f"{signature.name} returned an unconvertible value: {exc}", function=signature.name) from exc

    def _trampoline(self, signature: CallableSignature, func: Callable[..., Any]) -> Callable[..., Any]:
        def call(*natives: Any) -> Any:
            try:
                args = self.coerce(signature, tuple(self._runtime.to_value(native) for native in natives))
                self.depth += 1
                try:
                    returned = func(*args)
                except Exception as exc:
                    raise CallbackError(f"{signature.name} raised {exc!r}", function=signature.name) from exc
                finally:
                    self.depth -= 1
                return self._runtime.to_native(self.result(signature, returned))
            except BridgeError as exc:
                error = exc if isinstance(exc, CallbackError) else CallbackError(str(exc), function=signature.name)
                if error is not exc:
                    error.__cause__ = exc
                self._pending = error
                logger.debug("function %s failed: %s", signature.name, error)
                raise error

        call.__name__ = signature.name
        return call


def _has_error_terminal(returns: Any) -> bool:
    if typing.get_origin(returns) is not tuple:
        return False
    args = typing.get_args(returns)
    if not args or args[-1] is Ellipsis:
        return False
    last, _ = unwrap_optional(args[-1])
    return isinstance(last, type) and issubclass(last, BaseException)


def _return_hints(signature: CallableSignature, count: int) -> list[Any]:
    """Declared type of each returned value, ``Any`` where it is not declared."""

    returns = signature.returns
    if typing.get_origin(returns) is not tuple:
        return [returns if count == 1 else Any] * count
    args = list(typing.get_args(returns))
    if len(args) == 2 and args[1] is Ellipsis:
        return [args[0]] * count
    if signature.error_terminal:
        args = args[:-1]
    return args if len(args) == count else [Any] * count
