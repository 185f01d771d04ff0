"""Marshalling between Python values and the CLIPS rule engine."""

from clipsbridge.config import BridgeConfig
from clipsbridge.environment import Environment
from clipsbridge.errors import (
    BridgeError,
    CallbackError,
    ConfigError,
    ConstructionError,
    ConversionError,
    InvalidReferenceError,
    OutOfRangeError,
    PrecisionLossError,
    SchemaMismatchError,
    UnsupportedTypeError,
)
from clipsbridge.functions import CallableSignature
from clipsbridge.handles import (
    Class,
    ClassSlot,
    Fact,
    FactBuilder,
    Instance,
    Template,
    TemplateSlot,
)
from clipsbridge.reflect import ClassSchema, SlotSchema, TypeReflector
from clipsbridge.shapes import ShapeDescriptor, register_shape, unregister_shape
from clipsbridge.synth import render_defclass
from clipsbridge.values import (
    EngineValue,
    ExternalAddressValue,
    FactAddressValue,
    FloatValue,
    InstanceAddressValue,
    InstanceName,
    InstanceNameValue,
    Int8,
    Int16,
    Int32,
    Int64,
    IntegerValue,
    MultifieldValue,
    StringValue,
    Symbol,
    SymbolValue,
    UInt8,
    UInt16,
    UInt32,
    UInt64,
    from_engine,
    render,
    to_engine,
)

__all__ = [
    "BridgeConfig",
    "Environment",
    "BridgeError",
    "CallbackError",
    "ConfigError",
    "ConstructionError",
    "ConversionError",
    "InvalidReferenceError",
    "OutOfRangeError",
    "PrecisionLossError",
    "SchemaMismatchError",
    "UnsupportedTypeError",
    "CallableSignature",
    "Class",
    "ClassSlot",
    "Fact",
    "FactBuilder",
    "Instance",
    "Template",
    "TemplateSlot",
    "ClassSchema",
    "SlotSchema",
    "TypeReflector",
    "ShapeDescriptor",
    "register_shape",
    "unregister_shape",
    "render_defclass",
    "EngineValue",
    "ExternalAddressValue",
    "FactAddressValue",
    "FloatValue",
    "InstanceAddressValue",
    "InstanceName",
    "InstanceNameValue",
    "Int8",
    "Int16",
    "Int32",
    "Int64",
    "IntegerValue",
    "MultifieldValue",
    "StringValue",
    "Symbol",
    "SymbolValue",
    "UInt8",
    "UInt16",
    "UInt32",
    "UInt64",
    "from_engine",
    "render",
    "to_engine",
]
