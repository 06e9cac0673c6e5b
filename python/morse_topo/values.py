"""Runtime values of the script language.

A value is exactly one of Number, Shape, Constraint or Label. Consumers
check with ``isinstance`` against these classes through the ``expect_*``
helpers, which raise ScriptTypeError naming the offending argument.
Numbers handed to a builtin must be finite.
"""

import math
from dataclasses import dataclass, field
from typing import Union

from morse_topo.errors import ScriptTypeError, ScriptValueError
from morse_topo.shapes import Shape


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Constraint:
    kind: str
    data: dict = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class Label:
    """A string literal; only meaningful as a builtin argument."""

    text: str


Value = Union[Number, Shape, Constraint, Label]


def type_name(value: Value) -> str:
    if isinstance(value, Number):
        return "number"
    if isinstance(value, Shape):
        return "shape"
    if isinstance(value, Constraint):
        return "constraint"
    if isinstance(value, Label):
        return "string"
    raise TypeError(f"not a script value: {value!r}")


def _mismatch(where: str, expected: str, value: Value) -> ScriptTypeError:
    return ScriptTypeError(f"{where}: expected {expected}, got {type_name(value)}")


def expect_number(value: Value, where: str) -> float:
    if not isinstance(value, Number):
        raise _mismatch(where, "number", value)
    if not math.isfinite(value.value):
        raise ScriptValueError(f"{where}: expected a finite number, got {value.value}")
    return value.value


def expect_shape(value: Value, where: str) -> Shape:
    if not isinstance(value, Shape):
        raise _mismatch(where, "shape", value)
    return value


def expect_constraint(value: Value, where: str) -> Constraint:
    if not isinstance(value, Constraint):
        raise _mismatch(where, "constraint", value)
    return value


def expect_label(value: Value, where: str) -> str:
    if not isinstance(value, Label):
        raise _mismatch(where, "string", value)
    return value.text
