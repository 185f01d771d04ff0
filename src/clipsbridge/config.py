"""Bridge configuration."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping, Optional

from clipsbridge.errors import ConfigError
from clipsbridge.values import is_safe_symbol


_BINDING_TAG_ENV = "CLIPSBRIDGE_BINDING_TAG"
_SERIALIZATION_TAG_ENV = "CLIPSBRIDGE_SERIALIZATION_TAG"
_SUPERCLASS_ENV = "CLIPSBRIDGE_SUPERCLASS"
_AUTO_SYNTHESIZE_ENV = "CLIPSBRIDGE_AUTO_SYNTHESIZE"
_LOAD_ENV = "CLIPSBRIDGE_LOAD"
_PATTERN_MATCH_MODES = {"reactive", "non-reactive"}
_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class BridgeConfig:
    """Settings for one ``Environment``.

    Attributes:
        binding_tag: Field metadata key holding a binding-specific slot name.
        serialization_tag: Field metadata key holding a generic serialized name.
        superclass: Superclass of synthesized classes.
        pattern_match: Pattern-match role of synthesized classes.
        auto_synthesize: Define missing classes on insert.
        load_paths: Construct files loaded when the environment starts.
    """

    binding_tag: str = "clips"
    serialization_tag: str = "json"
    superclass: str = "USER"
    pattern_match: str = "reactive"
    auto_synthesize: bool = True
    load_paths: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for label, tag in (("binding_tag", self.binding_tag), ("serialization_tag", self.serialization_tag)):
            if not isinstance(tag, str) or not tag.strip():
                raise ConfigError(f"{label} must be a non-empty string.")
        if self.binding_tag == self.serialization_tag:
            raise ConfigError("binding_tag and serialization_tag must differ.")
        if not isinstance(self.superclass, str) or not is_safe_symbol(self.superclass):
            raise ConfigError(f"superclass must be a class name, got {self.superclass!r}.")
        if self.pattern_match not in _PATTERN_MATCH_MODES:
            raise ConfigError(f"pattern_match must be one of {sorted(_PATTERN_MATCH_MODES)}.")
        if not isinstance(self.auto_synthesize, bool):
            raise ConfigError("auto_synthesize must be a bool.")
        if isinstance(self.load_paths, str):
            raise ConfigError("load_paths must be a sequence of paths, not a string.")
        object.__setattr__(self, "load_paths", tuple(str(path) for path in self.load_paths))

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> "BridgeConfig":
        """Build a config from ``CLIPSBRIDGE_*`` variables, defaults elsewhere."""

        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        if env.get(_BINDING_TAG_ENV):
            kwargs["binding_tag"] = env[_BINDING_TAG_ENV]
        if env.get(_SERIALIZATION_TAG_ENV):
            kwargs["serialization_tag"] = env[_SERIALIZATION_TAG_ENV]
        if env.get(_SUPERCLASS_ENV):
            kwargs["superclass"] = env[_SUPERCLASS_ENV]
        if env.get(_AUTO_SYNTHESIZE_ENV):
            kwargs["auto_synthesize"] = _parse_bool(_AUTO_SYNTHESIZE_ENV, env[_AUTO_SYNTHESIZE_ENV])
        if env.get(_LOAD_ENV):
            kwargs["load_paths"] = tuple(path for path in env[_LOAD_ENV].split(os.pathsep) if path)
        return BridgeConfig(**kwargs)


def _parse_bool(name: str, raw: str) -> bool:
    word = raw.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ConfigError(f"{name} must be a boolean word, got {raw!r}.")
