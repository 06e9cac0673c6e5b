"""Numeric evaluation of a topology graph.

Nodes are visited in stored order, which is a topological order, so every
input value is available when a node is reached. Coordinates may be Python
floats or numpy arrays of matching shape; the latter lets the mesher sample
a whole lattice slab in one pass. An intermediate value is dropped as soon as
its last consumer has run, so peak memory follows the widest point of the
graph rather than its node count.

Besides plain values the graph can be evaluated for its gradient (forward
mode) and over an axis-aligned box (interval bounds).
"""

import math

import numpy as np

from morse_topo.errors import UnsupportedGraphOp
from morse_topo.graph import DEFAULT_SMOOTH_K
from morse_topo.topology import TopologyGraph

Interval = tuple[float, float]


def smooth_min(a, b, k: float = DEFAULT_SMOOTH_K):
    h = np.clip(0.5 + 0.5 * (b - a) / k, 0.0, 1.0)
    return b * (1.0 - h) + a * h - k * h * (1.0 - h)


def smooth_max(a, b, k: float = DEFAULT_SMOOTH_K):
    h = np.clip(0.5 - 0.5 * (b - a) / k, 0.0, 1.0)
    return b * (1.0 - h) + a * h + k * h * (1.0 - h)


_UNARY = {
    "neg": np.negative,
    "sin": np.sin,
    "cos": np.cos,
    "exp": np.exp,
}

_BINARY = {
    "add": np.add,
    "sub": np.subtract,
    "mul": np.multiply,
    "div": np.divide,
    "min": np.minimum,
    "max": np.maximum,
}


def _smooth_k(node) -> float:
    return float(node.params.get("k", DEFAULT_SMOOTH_K))


def last_uses(graph: TopologyGraph) -> list[int]:
    """For every node, the position of the last node reading it (-1 if none)."""
    last = [-1] * len(graph.nodes)
    for position, node in enumerate(graph.nodes):
        for i in node.inputs:
            last[i] = position
    return last


def _release_inputs(values: list, node, position: int, last: list[int], root: int):
    for i in node.inputs:
        if last[i] == position and i != root:
            values[i] = None


def evaluate(graph: TopologyGraph, x, y, z):
    """Field value at the root for the given point (or arrays of points)."""
    last = last_uses(graph)
    values = []
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        for position, node in enumerate(graph.nodes):
            op = node.op
            ins = [values[i] for i in node.inputs]
            if op == "const":
                v = float(node.params["value"])
            elif op == "x":
                v = x
            elif op == "y":
                v = y
            elif op == "z":
                v = z
            elif op in _BINARY:
                v = _BINARY[op](ins[0], ins[1])
            elif op in _UNARY:
                v = _UNARY[op](ins[0])
            elif op == "smin":
                v = smooth_min(ins[0], ins[1], _smooth_k(node))
            elif op == "smax":
                v = smooth_max(ins[0], ins[1], _smooth_k(node))
            else:
                raise UnsupportedGraphOp(op)
            values.append(v)
            _release_inputs(values, node, position, last, graph.root)
    return values[graph.root]


def evaluate_point(graph: TopologyGraph, x: float, y: float, z: float) -> float:
    return float(evaluate(graph, float(x), float(y), float(z)))


# ── gradient ────────────────────────────────────────────────────


def _scale(g, s):
    return (g[0] * s, g[1] * s, g[2] * s)


def _blend(ga, gb, h):
    return tuple(gb[i] * (1.0 - h) + ga[i] * h for i in range(3))


def gradient(graph: TopologyGraph, x: float, y: float, z: float):
    """Value and gradient ``(value, (dx, dy, dz))`` at one point.

    Forward mode: every node carries its value and its partial derivatives
    with respect to x, y and z. ``min``/``max`` follow the selected branch
    (the second on a tie); the smooth blends use ``h`` and ``1 - h`` as branch
    weights, which is exact because the derivative of the correction term
    cancels.
    """
    x, y, z = float(x), float(y), float(z)
    zero = (0.0, 0.0, 0.0)
    last = last_uses(graph)
    duals = []
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        for position, node in enumerate(graph.nodes):
            op = node.op
            ins = [duals[i] for i in node.inputs]
            if op == "const":
                d = (float(node.params["value"]), zero)
            elif op == "x":
                d = (x, (1.0, 0.0, 0.0))
            elif op == "y":
                d = (y, (0.0, 1.0, 0.0))
            elif op == "z":
                d = (z, (0.0, 0.0, 1.0))
            elif op in ("add", "sub"):
                (va, ga), (vb, gb) = ins
                sign = 1.0 if op == "add" else -1.0
                d = (va + sign * vb, tuple(ga[i] + sign * gb[i] for i in range(3)))
            elif op == "mul":
                (va, ga), (vb, gb) = ins
                d = (va * vb, tuple(ga[i] * vb + gb[i] * va for i in range(3)))
            elif op == "div":
                (va, ga), (vb, gb) = ins
                inv = float(np.divide(1.0, vb))
                d = (va * inv, tuple((ga[i] * vb - va * gb[i]) * inv * inv for i in range(3)))
            elif op == "neg":
                va, ga = ins[0]
                d = (-va, _scale(ga, -1.0))
            elif op == "sin":
                va, ga = ins[0]
                d = (float(np.sin(va)), _scale(ga, float(np.cos(va))))
            elif op == "cos":
                va, ga = ins[0]
                d = (float(np.cos(va)), _scale(ga, -float(np.sin(va))))
            elif op == "exp":
                va, ga = ins[0]
                e = float(np.exp(va))
                d = (e, _scale(ga, e))
            elif op == "min":
                a, b = ins
                d = a if a[0] < b[0] else b
            elif op == "max":
                a, b = ins
                d = a if a[0] > b[0] else b
            elif op in ("smin", "smax"):
                (va, ga), (vb, gb) = ins
                k = _smooth_k(node)
                if op == "smin":
                    h = min(1.0, max(0.0, 0.5 + 0.5 * (vb - va) / k))
                    v = vb * (1.0 - h) + va * h - k * h * (1.0 - h)
                else:
                    h = min(1.0, max(0.0, 0.5 - 0.5 * (vb - va) / k))
                    v = vb * (1.0 - h) + va * h + k * h * (1.0 - h)
                d = (v, _blend(ga, gb, h))
            else:
                raise UnsupportedGraphOp(op)
            duals.append(d)
            _release_inputs(duals, node, position, last, graph.root)
    value, grad = duals[graph.root]
    return float(value), tuple(float(g) for g in grad)


# ── interval bounds ─────────────────────────────────────────────

_UNBOUNDED = (-math.inf, math.inf)


def _hull(candidates) -> Interval:
    if any(math.isnan(c) for c in candidates):
        return _UNBOUNDED
    return min(candidates), max(candidates)


def _interval_mul(a: Interval, b: Interval) -> Interval:
    return _hull([a[0] * b[0], a[0] * b[1], a[1] * b[0], a[1] * b[1]])


def _interval_div(a: Interval, b: Interval) -> Interval:
    if b[0] <= 0.0 <= b[1]:
        return _UNBOUNDED
    return _interval_mul(a, (1.0 / b[1], 1.0 / b[0]))


def _interval_exp(a: Interval) -> Interval:
    def safe_exp(v):
        return math.inf if v > 709.0 else math.exp(v)

    return safe_exp(a[0]), safe_exp(a[1])


def evaluate_interval(graph: TopologyGraph, x: Interval, y: Interval, z: Interval) -> Interval:
    """Bounds ``(lo, hi)`` enclosing every field value over the box ``x*y*z``.

    The bounds are conservative: the true range always lies inside them, but
    they may be wider. ``sin``/``cos`` are bounded by [-1, 1] regardless of
    their argument and a divisor range containing zero gives no bound at all.
    """
    last = last_uses(graph)
    ranges: list = []
    for position, node in enumerate(graph.nodes):
        op = node.op
        ins = [ranges[i] for i in node.inputs]
        if op == "const":
            value = float(node.params["value"])
            r = (value, value)
        elif op == "x":
            r = (float(x[0]), float(x[1]))
        elif op == "y":
            r = (float(y[0]), float(y[1]))
        elif op == "z":
            r = (float(z[0]), float(z[1]))
        elif op == "add":
            r = _hull([ins[0][0] + ins[1][0], ins[0][1] + ins[1][1]])
        elif op == "sub":
            r = _hull([ins[0][0] - ins[1][1], ins[0][1] - ins[1][0]])
        elif op == "mul":
            r = _interval_mul(ins[0], ins[1])
        elif op == "div":
            r = _interval_div(ins[0], ins[1])
        elif op == "neg":
            r = (-ins[0][1], -ins[0][0])
        elif op in ("sin", "cos"):
            r = (-1.0, 1.0)
        elif op == "exp":
            r = _interval_exp(ins[0])
        elif op == "min":
            r = (min(ins[0][0], ins[1][0]), min(ins[0][1], ins[1][1]))
        elif op == "max":
            r = (max(ins[0][0], ins[1][0]), max(ins[0][1], ins[1][1]))
        elif op == "smin":
            # the blend dips at most k/4 below the plain minimum
            r = (min(ins[0][0], ins[1][0]) - _smooth_k(node) / 4.0, min(ins[0][1], ins[1][1]))
        elif op == "smax":
            r = (max(ins[0][0], ins[1][0]), max(ins[0][1], ins[1][1]) + _smooth_k(node) / 4.0)
        else:
            raise UnsupportedGraphOp(op)
        ranges.append(r)
        _release_inputs(ranges, node, position, last, graph.root)
    return ranges[graph.root]
