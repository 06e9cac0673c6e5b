"""Shape capabilities.

A shape is an immutable value with a single operation, ``emit``: given a
graph builder and a symbolic coordinate it appends the nodes computing its
field there and returns the id of the resulting node. Inside is <= 0.
Emitting the same shape twice appends structurally identical subgraphs.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from morse_topo.graph import DEFAULT_SMOOTH_K, Coord, GraphBuilder


class Shape(ABC):
    @abstractmethod
    def emit(self, b: GraphBuilder, p: Coord) -> int:
        ...

    def at(self, dx: float, dy: float, dz: float) -> "Shape":
        return Translate(self, float(dx), float(dy), float(dz))

    def rotz(self, angle: float) -> "Shape":
        return RotateZ(self, float(angle))


def _radial_sq(b: GraphBuilder, p: Coord) -> int:
    return b.add(b.square(p.x), b.square(p.y))


def _axis_bound(b: GraphBuilder, a: int, half: float) -> int:
    """``max(a - half, -half - a)``: <= 0 inside the slab |a| <= half."""
    return b.max(b.sub(a, b.const(half)), b.sub(b.const(-half), a))


# ── primitives ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Sphere(Shape):
    radius: float

    def emit(self, b, p):
        q = b.add(_radial_sq(b, p), b.square(p.z))
        return b.sub(q, b.const(self.radius * self.radius))


@dataclass(frozen=True)
class Cylinder(Shape):
    """Z-aligned cylinder centred at the origin."""

    radius: float
    half_height: float

    def emit(self, b, p):
        side = b.sub(_radial_sq(b, p), b.const(self.radius * self.radius))
        cap = b.sub(b.square(p.z), b.const(self.half_height * self.half_height))
        return b.max(side, cap)


@dataclass(frozen=True)
class Box(Shape):
    """Axis-aligned box of full extents ``sx, sy, sz`` centred at the origin."""

    sx: float
    sy: float
    sz: float

    def emit(self, b, p):
        bx = _axis_bound(b, p.x, self.sx * 0.5)
        by = _axis_bound(b, p.y, self.sy * 0.5)
        bz = _axis_bound(b, p.z, self.sz * 0.5)
        return b.max(bx, b.max(by, bz))


@dataclass(frozen=True)
class Torus(Shape):
    major_radius: float
    minor_radius: float

    def emit(self, b, p):
        big, small = self.major_radius, self.minor_radius
        r2 = _radial_sq(b, p)
        q = b.add(r2, b.square(p.z))
        t = b.add(q, b.const(big * big - small * small))
        return b.sub(b.square(t), b.mul(b.const(4.0 * big * big), r2))


@dataclass(frozen=True)
class Tube(Shape):
    """Solid wall ``inner <= sqrt(x^2+y^2) <= outer``, ``|z| <= half_height``."""

    outer_radius: float
    inner_radius: float
    half_height: float

    def emit(self, b, p):
        r2 = _radial_sq(b, p)
        outer = b.sub(r2, b.const(self.outer_radius * self.outer_radius))
        inner = b.sub(b.const(self.inner_radius * self.inner_radius), r2)
        cap = b.sub(b.square(p.z), b.const(self.half_height * self.half_height))
        return b.max(b.max(outer, inner), cap)


# ── booleans ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Union(Shape):
    shapes: tuple[Shape, ...]

    def emit(self, b, p):
        acc = self.shapes[0].emit(b, p)
        for shape in self.shapes[1:]:
            acc = b.min(acc, shape.emit(b, p))
        return acc


@dataclass(frozen=True)
class Intersect(Shape):
    shapes: tuple[Shape, ...]

    def emit(self, b, p):
        acc = self.shapes[0].emit(b, p)
        for shape in self.shapes[1:]:
            acc = b.max(acc, shape.emit(b, p))
        return acc


@dataclass(frozen=True)
class Subtract(Shape):
    base: Shape
    cutter: Shape

    def emit(self, b, p):
        return b.max(self.base.emit(b, p), b.neg(self.cutter.emit(b, p)))


@dataclass(frozen=True)
class SmoothUnion(Shape):
    a: Shape
    b: Shape
    k: float = DEFAULT_SMOOTH_K

    def emit(self, b, p):
        return b.smin(self.a.emit(b, p), self.b.emit(b, p), self.k)


@dataclass(frozen=True)
class SmoothSubtract(Shape):
    a: Shape
    b: Shape
    k: float = DEFAULT_SMOOTH_K

    def emit(self, b, p):
        return b.smax(self.a.emit(b, p), b.neg(self.b.emit(b, p)), self.k)


# ── transforms ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Translate(Shape):
    shape: Shape
    dx: float
    dy: float
    dz: float

    def emit(self, b, p):
        moved = Coord(b.shift(p.x, self.dx), b.shift(p.y, self.dy), b.shift(p.z, self.dz))
        return self.shape.emit(b, moved)


@dataclass(frozen=True)
class RotateZ(Shape):
    """Rotate ``shape`` by ``angle`` radians about the z axis.

    The coordinate is rotated by ``-angle``; sine and cosine are folded into
    constants at compile time.
    """

    shape: Shape
    angle: float

    def emit(self, b, p):
        c = b.const(math.cos(self.angle))
        s = b.const(math.sin(self.angle))
        x = b.add(b.mul(c, p.x), b.mul(s, p.y))
        y = b.sub(b.mul(c, p.y), b.mul(s, p.x))
        return self.shape.emit(b, Coord(x, y, p.z))


def polar_instances(shape: Shape, count: int, radius: float,
                    start: float = 0.0, step=None) -> list[Shape]:
    """``count`` copies of ``shape`` turned to face outward and placed on a
    circle of ``radius`` in the xy plane. An instance at angle 0 gets no
    rotation node."""
    if step is None:
        step = 2.0 * math.pi / count
    out = []
    for i in range(count):
        angle = start + i * step
        turned = shape if angle == 0.0 else RotateZ(shape, angle)
        out.append(Translate(turned, radius * math.cos(angle), radius * math.sin(angle), 0.0))
    return out


def union_of(shapes) -> Shape:
    shapes = tuple(shapes)
    if len(shapes) == 1:
        return shapes[0]
    return Union(shapes)
