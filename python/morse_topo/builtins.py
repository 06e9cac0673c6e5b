"""Builtin functions and methods of the script language.

Every entry declares its arity; the interpreter checks argument count before
calling, and each builtin checks argument types itself through the
``expect_*`` helpers.
"""

import math
from dataclasses import dataclass
from typing import Callable, Optional

from morse_topo import shapes
from morse_topo.errors import DegenerateGeometry, ScriptValueError, UnsupportedSynthesis
from morse_topo.synthesis import CONSTRAINT_FIELDS, make_constraint, synthesize_ring
from morse_topo.values import (
    Constraint,
    Label,
    Number,
    Value,
    expect_constraint,
    expect_label,
    expect_number,
    expect_shape,
)

RING_SYNTHESIS_KINDS = ("ring", "halbach")
MAX_POLAR_COUNT = 1024


@dataclass(frozen=True)
class Builtin:
    name: str
    fn: Callable
    min_args: int
    max_args: Optional[int]

    def arity_text(self) -> str:
        if self.max_args == self.min_args:
            return str(self.min_args)
        if self.max_args is None:
            return f"at least {self.min_args}"
        return f"{self.min_args} to {self.max_args}"


BUILTINS: dict[str, Builtin] = {}
METHODS: dict[str, Builtin] = {}


def builtin(name: str, min_args: int, max_args: Optional[int] = -1, table=BUILTINS):
    """Register ``fn(ctx, *args)``; ``max_args=None`` means variadic."""
    if max_args == -1:
        max_args = min_args

    def register(fn):
        table[name] = Builtin(name, fn, min_args, max_args)
        return fn

    return register


def method(name: str, min_args: int, max_args: Optional[int] = -1):
    return builtin(name, min_args, max_args, table=METHODS)


def _numbers(name: str, args) -> list[float]:
    return [expect_number(a, f"{name} argument {i + 1}") for i, a in enumerate(args)]


def _shapes(name: str, args) -> list[shapes.Shape]:
    return [expect_shape(a, f"{name} argument {i + 1}") for i, a in enumerate(args)]


# ── primitives ──────────────────────────────────────────────────


@builtin("sphere", 1)
def _sphere(ctx, r):
    return shapes.Sphere(expect_number(r, "sphere radius"))


@builtin("cylinder", 2)
def _cylinder(ctx, *args):
    r, half_h = _numbers("cylinder", args)
    return shapes.Cylinder(r, half_h)


@builtin("box", 3)
def _box(ctx, *args):
    return shapes.Box(*_numbers("box", args))


@builtin("torus", 2)
def _torus(ctx, *args):
    return shapes.Torus(*_numbers("torus", args))


@builtin("tube", 3)
def _tube(ctx, *args):
    outer_r, inner_r, half_h = _numbers("tube", args)
    if inner_r >= outer_r:
        raise DegenerateGeometry(
            f"tube inner radius {inner_r:g} must be smaller than outer radius {outer_r:g}"
        )
    return shapes.Tube(outer_r, inner_r, half_h)


# ── booleans ────────────────────────────────────────────────────


@builtin("union", 2, None)
def _union(ctx, *args):
    return shapes.Union(tuple(_shapes("union", args)))


@builtin("intersect", 2, None)
def _intersect(ctx, *args):
    return shapes.Intersect(tuple(_shapes("intersect", args)))


@builtin("subtract", 2)
def _subtract(ctx, a, b):
    return shapes.Subtract(expect_shape(a, "subtract argument 1"), expect_shape(b, "subtract argument 2"))


def _blend_factor(name: str, k) -> float:
    if k is None:
        return shapes.DEFAULT_SMOOTH_K
    value = expect_number(k, f"{name} blend factor")
    if value <= 0.0:
        raise ScriptValueError(f"{name} blend factor must be positive, got {value:g}")
    return value


@builtin("smooth_union", 2, 3)
def _smooth_union(ctx, a, b, k=None):
    a, b = _shapes("smooth_union", (a, b))
    return shapes.SmoothUnion(a, b, _blend_factor("smooth_union", k))


@builtin("smooth_subtract", 2, 3)
def _smooth_subtract(ctx, a, b, k=None):
    a, b = _shapes("smooth_subtract", (a, b))
    return shapes.SmoothSubtract(a, b, _blend_factor("smooth_subtract", k))


# ── repetition and voids ────────────────────────────────────────


@builtin("repeat_polar", 3, 5)
def _repeat_polar(ctx, shape, *rest):
    shape = expect_shape(shape, "repeat_polar argument 1")
    count, radius, *angles = _numbers("repeat_polar", rest)
    count = max(1, int(math.floor(count)))
    if count > MAX_POLAR_COUNT:
        raise ScriptValueError(f"repeat_polar count {count} exceeds the limit of {MAX_POLAR_COUNT}")
    start = angles[0] if angles else 0.0
    step = angles[1] if len(angles) > 1 else None
    return shapes.union_of(shapes.polar_instances(shape, count, radius, start, step))


@builtin("void_cylinder", 5)
def _void_cylinder(ctx, *args):
    x, y, z, r, half_h = _numbers("void_cylinder", args)
    return shapes.Cylinder(r, half_h).at(x, y, z)


@builtin("apply_voids", 2, None)
def _apply_voids(ctx, base, *voids):
    base = expect_shape(base, "apply_voids base")
    cutters = [expect_shape(v, f"apply_voids void {i + 1}") for i, v in enumerate(voids)]
    return shapes.Subtract(base, shapes.union_of(cutters))


# ── constraints ─────────────────────────────────────────────────


def _register_require(kind: str):
    @builtin(f"require_{kind}", 1)
    def _require(ctx, value):
        return make_constraint(kind, expect_number(value, f"require_{kind} argument"))

    return _require


for _kind in CONSTRAINT_FIELDS:
    _register_require(_kind)


@builtin("require", 2)
def _require_generic(ctx, kind, value):
    kind = expect_label(kind, "require kind")
    return make_constraint(kind, expect_number(value, f"require {kind!r} value"))


@builtin("bore", 2)
def _bore(ctx, name, diameter):
    name = expect_label(name, "bore name")
    d = max(0.0, expect_number(diameter, "bore diameter"))
    return Constraint("bore", {"name": name, "diameter": d})


def _relate_operand(value: Value, where: str):
    if isinstance(value, Number):
        return value.value
    return expect_constraint(value, where).data.get("name", value.kind)


@builtin("relate", 3, 4)
def _relate(ctx, kind, a, b, value=None):
    data = {
        "relation": expect_label(kind, "relate kind"),
        "a": _relate_operand(a, "relate argument 2"),
        "b": _relate_operand(b, "relate argument 3"),
    }
    if value is not None:
        data["value"] = expect_number(value, "relate value")
    return Constraint("relate", data)


@builtin("objective", 2)
def _objective(ctx, name, weight):
    return Constraint("objective", {
        "name": expect_label(name, "objective name"),
        "weight": expect_number(weight, "objective weight"),
    })


@builtin("synthesize", 1, None)
def _synthesize(ctx, *args):
    kind = "ring"
    if args and isinstance(args[0], Label):
        kind, args = args[0].text, args[1:]
    constraints = [expect_constraint(a, f"synthesize argument {i + 1}") for i, a in enumerate(args)]
    if not constraints:
        raise ScriptValueError("synthesize needs at least one constraint")
    if kind not in RING_SYNTHESIS_KINDS:
        raise UnsupportedSynthesis(f"no solver for synthesis kind {kind!r}")
    shape, geometry = synthesize_ring(constraints)
    ctx.ring_geometry = geometry
    return shape


# ── methods ─────────────────────────────────────────────────────


@method("at", 3)
def _at(ctx, receiver, *args):
    shape = expect_shape(receiver, ":at receiver")
    return shape.at(*_numbers(":at", args))


@method("rotz", 1)
def _rotz(ctx, receiver, angle):
    shape = expect_shape(receiver, ":rotz receiver")
    return shape.rotz(expect_number(angle, ":rotz angle"))
