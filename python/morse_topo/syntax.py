"""Expression AST produced by the parser."""

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class NumberLiteral:
    value: float


@dataclass(frozen=True)
class StringLiteral:
    value: str


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Negate:
    operand: "Expr"


@dataclass(frozen=True)
class BinaryOp:
    op: str  # one of + - * /
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple["Expr", ...]


@dataclass(frozen=True)
class MethodCall:
    base: "Expr"
    method: str
    args: tuple["Expr", ...]


Expr = Union[NumberLiteral, StringLiteral, Variable, Negate, BinaryOp, Call, MethodCall]
