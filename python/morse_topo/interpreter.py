"""Script interpreter: statements -> root Shape -> topology graph.

A script is a sequence of statements, one per line, each either
``name = expr`` or a bare expression. A statement may continue onto the
following lines while its parentheses are open. The root shape is the one
bound to ``result``, otherwise the last shape any statement produced.
"""

import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import Iterator, Optional

from morse_topo.builtins import BUILTINS, METHODS, Builtin
from morse_topo.errors import (
    ArityError,
    GraphError,
    NestingTooDeep,
    NoResultShape,
    ScriptError,
    ScriptTypeError,
    ScriptValueError,
    UnknownBuiltin,
    UnknownIdentifier,
    UnknownMethod,
)
from morse_topo.graph import GraphBuilder
from morse_topo.lexer import strip_comment, tokenize
from morse_topo.parser import parse_expression
from morse_topo.shapes import Shape
from morse_topo.synthesis import RingGeometry
from morse_topo.syntax import (
    BinaryOp,
    Call,
    Expr,
    MethodCall,
    Negate,
    NumberLiteral,
    StringLiteral,
    Variable,
)
from morse_topo.topology import TopologyGraph
from morse_topo.values import Label, Number, Value, expect_number

logger = logging.getLogger(__name__)

RESULT_NAME = "result"
_ASSIGNMENT = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=(.*)$", re.DOTALL)


@dataclass(frozen=True)
class Statement:
    line: int
    text: str


@dataclass
class CompileResult:
    graph: TopologyGraph
    shape: Shape
    ring_geometry: Optional[RingGeometry] = None
    timings: dict = field(default_factory=dict)


def split_statements(script: str) -> Iterator[Statement]:
    """Yield comment-free statements with the 1-based line they start on."""
    pending: list[str] = []
    start = 0
    depth = 0
    for number, raw in enumerate(script.splitlines(), start=1):
        line = strip_comment(raw)
        if not pending and not line.strip():
            continue
        if not pending:
            start = number
        pending.append(line)
        depth += _paren_balance(line)
        if depth <= 0:
            yield Statement(start, "\n".join(pending))
            pending, depth = [], 0
    if pending:
        # Unclosed parentheses: hand the text to the parser so it reports them.
        yield Statement(start, "\n".join(pending))


def _paren_balance(line: str) -> int:
    balance = 0
    in_string = False
    for ch in line:
        if ch == '"':
            in_string = not in_string
        elif not in_string and ch == "(":
            balance += 1
        elif not in_string and ch == ")":
            balance -= 1
    return balance


class Interpreter:
    """Evaluates one script; create a fresh instance per compilation."""

    def __init__(self):
        self.env: dict[str, Value] = {"pi": Number(math.pi)}
        self.last_shape: Optional[Shape] = None
        self.ring_geometry: Optional[RingGeometry] = None

    def run(self, script: str) -> Shape:
        for stmt in split_statements(script):
            try:
                self.execute(stmt.text)
            except ScriptError as e:
                if e.line is None:
                    e.line = stmt.line
                raise
            except RecursionError:
                raise NestingTooDeep("expression nesting too deep", stmt.line) from None
        root = self.env.get(RESULT_NAME)
        if isinstance(root, Shape):
            return root
        if self.last_shape is not None:
            return self.last_shape
        raise NoResultShape("script produced no shape (bind one to 'result')")

    def execute(self, text: str) -> Value:
        match = _ASSIGNMENT.match(text)
        name = None
        if match:
            name, text = match.group(1), match.group(2)
        value = self.evaluate(parse_expression(tokenize(text)))
        if name is not None:
            self.env[name] = value
        if isinstance(value, Shape):
            self.last_shape = value
        return value

    # ── evaluation ──────────────────────────────────────────────

    def evaluate(self, expr: Expr) -> Value:
        if isinstance(expr, NumberLiteral):
            return Number(expr.value)
        if isinstance(expr, StringLiteral):
            return Label(expr.value)
        if isinstance(expr, Variable):
            try:
                return self.env[expr.name]
            except KeyError:
                raise UnknownIdentifier(f"unknown identifier {expr.name!r}") from None
        if isinstance(expr, Negate):
            return Number(-expect_number(self.evaluate(expr.operand), "unary '-' operand"))
        if isinstance(expr, BinaryOp):
            return self._arithmetic(expr)
        if isinstance(expr, Call):
            entry = BUILTINS.get(expr.name)
            if entry is None:
                raise UnknownBuiltin(f"unknown builtin {expr.name!r}")
            args = [self.evaluate(a) for a in expr.args]
            return self._invoke(entry, expr.name, args)
        if isinstance(expr, MethodCall):
            entry = METHODS.get(expr.method)
            if entry is None:
                raise UnknownMethod(f"unknown method {expr.method!r}")
            receiver = self.evaluate(expr.base)
            args = [self.evaluate(a) for a in expr.args]
            return self._invoke(entry, f":{expr.method}", args, receiver)
        raise ScriptTypeError(f"cannot evaluate {type(expr).__name__}")

    def _invoke(self, entry: Builtin, label: str, args: list, receiver=None) -> Value:
        n = len(args)
        if n < entry.min_args or (entry.max_args is not None and n > entry.max_args):
            raise ArityError(f"{label} expects {entry.arity_text()} arguments, got {n}")
        if receiver is not None:
            return entry.fn(self, receiver, *args)
        return entry.fn(self, *args)

    def _arithmetic(self, expr: BinaryOp) -> Number:
        a = expect_number(self.evaluate(expr.left), f"left operand of '{expr.op}'")
        b = expect_number(self.evaluate(expr.right), f"right operand of '{expr.op}'")
        if expr.op == "+":
            return Number(a + b)
        if expr.op == "-":
            return Number(a - b)
        if expr.op == "*":
            return Number(a * b)
        if b == 0.0:
            raise ScriptValueError("division by zero")
        return Number(a / b)


def compile_script(script: str) -> CompileResult:
    """Compile script text into a topology graph.

    Any error aborts the whole compilation; no partial graph is returned.
    """
    t0 = time.perf_counter()
    interp = Interpreter()
    shape = interp.run(script)
    t1 = time.perf_counter()

    builder = GraphBuilder()
    try:
        root = shape.emit(builder, builder.origin())
    except RecursionError:
        raise NestingTooDeep("shape nesting too deep to emit") from None
    try:
        graph = TopologyGraph.from_builder(builder, root)
    except GraphError as e:
        raise ScriptValueError(f"shape produced an invalid field: {e}") from e
    t2 = time.perf_counter()

    timings = {
        "interpret_ms": round((t1 - t0) * 1000, 2),
        "emit_ms": round((t2 - t1) * 1000, 2),
    }
    logger.debug("compiled script: %d nodes, root n%d", graph.node_count, graph.root)
    return CompileResult(graph, shape, interp.ring_geometry, timings)
