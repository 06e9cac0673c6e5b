"""Graph builder: appends arithmetic nodes to an arena during one compilation.

Ids are dense integers issued in emission order, and every node only ever
references ids issued before it, so the arena is acyclic by construction.
"""

from dataclasses import dataclass, field
from typing import NamedTuple

DEFAULT_SMOOTH_K = 0.1

LEAF_OPS = ("const", "x", "y", "z")
UNARY_OPS = ("neg", "sin", "cos", "exp")
BINARY_OPS = ("add", "sub", "mul", "div", "min", "max", "smin", "smax")
OPS = frozenset(LEAF_OPS + UNARY_OPS + BINARY_OPS)


@dataclass(frozen=True)
class Node:
    id: int
    op: str
    inputs: tuple[int, ...] = ()
    params: dict = field(default_factory=dict, compare=False, hash=False)


class Coord(NamedTuple):
    """Symbolic evaluation point: node ids for the x, y and z expressions."""

    x: int
    y: int
    z: int


class GraphBuilder:
    """Owns the node arena and the constant cache of a single compilation."""

    def __init__(self):
        self.nodes: list[Node] = []
        self._next_id = 0
        self._constants: dict[float, int] = {}
        self._origin = None

    def __len__(self) -> int:
        return len(self.nodes)

    def _emit(self, op: str, inputs: tuple[int, ...] = (), params=None) -> int:
        for i in inputs:
            if not 0 <= i < self._next_id:
                raise ValueError(f"{op} input {i} was not emitted before node {self._next_id}")
        node_id = self._next_id
        self._next_id += 1
        self.nodes.append(Node(node_id, op, tuple(inputs), dict(params or {})))
        return node_id

    # ── leaves ──────────────────────────────────────────────────

    def const(self, value: float) -> int:
        value = float(value)
        if value == 0.0:
            value = 0.0  # -0.0 and 0.0 share one node
        cached = self._constants.get(value)
        if cached is not None:
            return cached
        node_id = self._emit("const", params={"value": value})
        self._constants[value] = node_id
        return node_id

    def x(self) -> int:
        return self._emit("x")

    def y(self) -> int:
        return self._emit("y")

    def z(self) -> int:
        return self._emit("z")

    def origin(self) -> Coord:
        """The untransformed coordinate; its leaves are emitted once."""
        if self._origin is None:
            self._origin = Coord(self.x(), self.y(), self.z())
        return self._origin

    # ── arithmetic ──────────────────────────────────────────────

    def add(self, a: int, b: int) -> int:
        return self._emit("add", (a, b))

    def sub(self, a: int, b: int) -> int:
        return self._emit("sub", (a, b))

    def mul(self, a: int, b: int) -> int:
        return self._emit("mul", (a, b))

    def div(self, a: int, b: int) -> int:
        return self._emit("div", (a, b))

    def neg(self, a: int) -> int:
        return self._emit("neg", (a,))

    def sin(self, a: int) -> int:
        return self._emit("sin", (a,))

    def cos(self, a: int) -> int:
        return self._emit("cos", (a,))

    def exp(self, a: int) -> int:
        return self._emit("exp", (a,))

    def min(self, a: int, b: int) -> int:
        return self._emit("min", (a, b))

    def max(self, a: int, b: int) -> int:
        return self._emit("max", (a, b))

    def smin(self, a: int, b: int, k: float = DEFAULT_SMOOTH_K) -> int:
        return self._emit("smin", (a, b), {"k": float(k)})

    def smax(self, a: int, b: int, k: float = DEFAULT_SMOOTH_K) -> int:
        return self._emit("smax", (a, b), {"k": float(k)})

    # ── helpers used by shapes ──────────────────────────────────

    def square(self, a: int) -> int:
        return self.mul(a, a)

    def shift(self, a: int, offset: float) -> int:
        """``a - offset``; a zero offset emits nothing."""
        if offset == 0.0:
            return a
        return self.sub(a, self.const(offset))
