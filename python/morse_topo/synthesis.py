"""Constraint synthesis: turn named geometric constraints into a Halbach
magnet ring.

The ring is a flat annulus around a centre hole sized for a coverslip, with
two staggered orbits of square magnet pockets cut through it.
"""

import logging
import math
from dataclasses import dataclass, fields, replace
from typing import Iterable

from morse_topo.errors import ScriptValueError
from morse_topo.shapes import Box, Cylinder, Shape, Subtract, polar_instances, union_of
from morse_topo.values import Constraint

logger = logging.getLogger(__name__)

EPSILON = 1e-6
MIN_SIZE = 1e-3
HOLE_CLEARANCE = 0.05
MAX_POCKETS = 256

# constraint kind -> RingConfig field
CONSTRAINT_FIELDS = {
    "coverslip": "coverslip_d",
    "center_hole": "center_hole_d",
    "magnet_size": "magnet_size",
    "inner_count": "inner_count",
    "outer_count": "outer_count",
    "min_gap": "min_gap",
    "ring_height": "ring_half_h",
}
SIZE_KINDS = {"coverslip", "center_hole", "magnet_size", "ring_height"}
COUNT_KINDS = {"inner_count", "outer_count"}
GAP_KINDS = {"min_gap"}


@dataclass(frozen=True)
class RingConfig:
    coverslip_d: float = 20.0
    center_hole_d: float = 25.0
    magnet_size: float = 12.8
    inner_count: int = 8
    outer_count: int = 12
    min_gap: float = 0.35
    ring_half_h: float = 6.5


@dataclass(frozen=True)
class RingGeometry:
    coverslip_radius: float
    hole_radius: float
    magnet_diagonal: float
    inner_orbit_radius: float
    outer_orbit_radius: float
    ring_outer_radius: float
    # Not consumed by the CSG tree; kept for diagnostics.
    ring_inner_radius: float
    slot_size: float

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def make_constraint(kind: str, value: float) -> Constraint:
    """Validate and clamp a ``require_*`` input into a Constraint."""
    if not math.isfinite(value):
        raise ScriptValueError(f"require {kind!r}: expected a finite number, got {value}")
    if kind in COUNT_KINDS:
        value = min(MAX_POCKETS, max(1, int(math.floor(value))))
    elif kind in GAP_KINDS:
        value = max(0.0, float(value))
    elif kind in SIZE_KINDS:
        value = max(MIN_SIZE, float(value))
    if kind == "ring_height":
        return Constraint(kind, {"value": value, "half": value / 2.0})
    return Constraint(kind, {"value": value})


def fold_constraints(constraints: Iterable[Constraint],
                     base: RingConfig = RingConfig()) -> RingConfig:
    changes = {}
    for c in constraints:
        name = CONSTRAINT_FIELDS.get(c.kind)
        if name is None:
            logger.warning("ring synthesis ignores constraint kind %r", c.kind)
            continue
        changes[name] = c.data["half"] if c.kind == "ring_height" else c.data["value"]
    return replace(base, **changes)


def derive_geometry(cfg: RingConfig) -> RingGeometry:
    coverslip_radius = max(EPSILON, cfg.coverslip_d / 2.0)
    hole_radius = max(cfg.center_hole_d / 2.0, coverslip_radius + cfg.min_gap)
    magnet_diagonal = cfg.magnet_size * math.sqrt(2.0)
    inner_orbit = hole_radius + magnet_diagonal / 2.0 + cfg.min_gap
    outer_orbit = inner_orbit + magnet_diagonal + cfg.min_gap
    ring_outer = outer_orbit + magnet_diagonal * 0.55 + cfg.min_gap
    ring_inner = max(hole_radius, inner_orbit - magnet_diagonal * 0.55 - cfg.min_gap)
    return RingGeometry(
        coverslip_radius=coverslip_radius,
        hole_radius=hole_radius,
        magnet_diagonal=magnet_diagonal,
        inner_orbit_radius=inner_orbit,
        outer_orbit_radius=outer_orbit,
        ring_outer_radius=ring_outer,
        ring_inner_radius=ring_inner,
        slot_size=cfg.magnet_size + cfg.min_gap / 2.0,
    )


def build_ring(cfg: RingConfig, geo: RingGeometry) -> Shape:
    h = cfg.ring_half_h
    body = Subtract(
        Cylinder(geo.ring_outer_radius, h),
        Cylinder(geo.hole_radius, h + HOLE_CLEARANCE),
    )
    pocket = Box(geo.slot_size, geo.slot_size, 2.0 * (h + HOLE_CLEARANCE))
    pockets = polar_instances(pocket, cfg.inner_count, geo.inner_orbit_radius)
    pockets += polar_instances(
        pocket, cfg.outer_count, geo.outer_orbit_radius, start=math.pi / cfg.outer_count
    )
    return Subtract(body, union_of(pockets))


def synthesize_ring(constraints: Iterable[Constraint]) -> tuple[Shape, RingGeometry]:
    cfg = fold_constraints(constraints)
    geo = derive_geometry(cfg)
    logger.info(
        "ring synthesized: hole_r=%.3f outer_r=%.3f pockets=%d+%d",
        geo.hole_radius, geo.ring_outer_radius, cfg.inner_count, cfg.outer_count,
    )
    return build_ring(cfg, geo), geo
