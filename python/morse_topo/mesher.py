"""Marching-tetrahedra isosurface extraction and ASCII STL export.

The field is sampled on a ``res x res x res`` lattice over the cube
``[lo, hi]^3``. Each lattice cell is split into six tetrahedra sharing the
0-7 diagonal, which gives an unambiguous triangulation per cell. Only cells
whose corners straddle the zero level-set are visited.
"""

import io
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from morse_topo.errors import MeshExportError
from morse_topo.field import evaluate
from morse_topo.topology import TopologyGraph

logger = logging.getLogger(__name__)

DEFAULT_SOLID_NAME = "morse_topology"
SLAB_SAMPLES = 1 << 16

# Cell corners are indexed ix + 2*iy + 4*iz.
CORNER_OFFSETS = tuple(((c & 1), (c >> 1) & 1, (c >> 2) & 1) for c in range(8))
TETRAHEDRA = (
    (0, 5, 1, 6),
    (0, 5, 6, 4),
    (0, 2, 6, 1),
    (0, 2, 3, 6),
    (0, 7, 4, 6),
    (0, 3, 7, 6),
)

Vec3 = tuple[float, float, float]


@dataclass(frozen=True)
class Triangle:
    v0: Vec3
    v1: Vec3
    v2: Vec3
    normal: Vec3


@dataclass
class Mesh:
    triangles: list[Triangle] = field(default_factory=list)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    @property
    def vertex_count(self) -> int:
        return 3 * len(self.triangles)

    def vertex_array(self) -> np.ndarray:
        """Vertices as a float array of shape (triangles, 3, 3)."""
        if not self.triangles:
            return np.zeros((0, 3, 3))
        return np.array([(t.v0, t.v1, t.v2) for t in self.triangles], dtype=float)


def _crossing(pa: np.ndarray, pb: np.ndarray, va: float, vb: float) -> np.ndarray:
    t = va / (va - vb)
    return pa + (pb - pa) * t


def _unit_normal(n: np.ndarray) -> np.ndarray:
    length = float(np.linalg.norm(n))
    return n / (length or 1.0)


def _vec(v) -> Vec3:
    return (float(v[0]), float(v[1]), float(v[2]))


def _oriented(a, b, c, inside_centroid) -> Triangle:
    n = np.cross(b - a, c - a)
    if np.dot(n, (a + b + c) / 3.0 - inside_centroid) < 0.0:
        b, c = c, b
        n = -n
    return Triangle(_vec(a), _vec(b), _vec(c), _vec(_unit_normal(n)))


def polygonize_tetrahedron(points: np.ndarray, values: np.ndarray) -> list[Triangle]:
    """Triangles for one tetrahedron (4 points, 4 field values)."""
    inside = [i for i in range(4) if values[i] < 0.0]
    outside = [i for i in range(4) if values[i] >= 0.0]
    if not inside or not outside:
        return []

    def cut(i, o):
        return _crossing(points[i], points[o], values[i], values[o])

    centroid = points[inside].mean(axis=0)
    if len(inside) == 1 or len(outside) == 1:
        lone, others = (inside[0], outside) if len(inside) == 1 else (outside[0], inside)
        a, b, c = (cut(lone, o) for o in others)
        return [_oriented(a, b, c, centroid)]

    # Two in, two out: the crossings form a quad; walk it cyclically.
    (i0, i1), (o0, o1) = inside, outside
    q = [cut(i0, o0), cut(i0, o1), cut(i1, o1), cut(i1, o0)]
    return [
        _oriented(q[0], q[1], q[2], centroid),
        _oriented(q[0], q[2], q[3], centroid),
    ]


def sample_lattice(graph: TopologyGraph, res: int, lo: float, hi: float,
                   slab_samples: int = SLAB_SAMPLES):
    """Field values on the lattice, evaluated a z-slab at a time so that the
    evaluator's working arrays hold at most ``slab_samples`` points."""
    axis = np.linspace(lo, hi, res)
    values = np.empty((res, res, res))
    depth = max(1, slab_samples // (res * res))
    for z0 in range(0, res, depth):
        gx, gy, gz = np.meshgrid(axis, axis, axis[z0:z0 + depth], indexing="ij", sparse=True)
        values[:, :, z0:z0 + depth] = evaluate(graph, gx, gy, gz)
    return axis, values


def active_cells(values: np.ndarray) -> np.ndarray:
    """Indices (ix, iy, iz) of cells with both inside and outside corners."""
    inside = values < 0.0
    any_in = np.zeros(tuple(s - 1 for s in values.shape), dtype=bool)
    all_in = np.ones_like(any_in)
    for dx, dy, dz in CORNER_OFFSETS:
        corner = inside[dx:dx + any_in.shape[0], dy:dy + any_in.shape[1], dz:dz + any_in.shape[2]]
        any_in |= corner
        all_in &= corner
    return np.argwhere(any_in & ~all_in)


def extract_isosurface(graph: TopologyGraph, res: int = 38,
                       bounds: tuple[float, float] = (-1.7, 1.7)) -> Mesh:
    if graph is None or graph.node_count == 0:
        raise MeshExportError("no topology graph to mesh")
    lo, hi = float(bounds[0]), float(bounds[1])
    if res < 2:
        raise MeshExportError(f"resolution must be at least 2, got {res}")
    if not lo < hi:
        raise MeshExportError(f"empty bounds [{lo}, {hi}]")

    t0 = time.perf_counter()
    axis, values = sample_lattice(graph, res, lo, hi)
    mesh = Mesh()
    cells = active_cells(values)
    for ix, iy, iz in cells:
        corners = [(ix + dx, iy + dy, iz + dz) for dx, dy, dz in CORNER_OFFSETS]
        pts = np.array([(axis[i], axis[j], axis[k]) for i, j, k in corners])
        vals = np.array([values[c] for c in corners])
        for tet in TETRAHEDRA:
            mesh.triangles.extend(polygonize_tetrahedron(pts[list(tet)], vals[list(tet)]))

    logger.info(
        "meshed %d nodes at res=%d: %d active cells, %d triangles (%.1fms)",
        graph.node_count, res, len(cells), mesh.triangle_count,
        (time.perf_counter() - t0) * 1000,
    )
    return mesh


def to_ascii_stl(mesh: Mesh, name: str = DEFAULT_SOLID_NAME) -> str:
    out = io.StringIO()
    out.write(f"solid {name}\n")
    for tri in mesh.triangles:
        out.write("  facet normal {:.6e} {:.6e} {:.6e}\n".format(*tri.normal))
        out.write("    outer loop\n")
        for v in (tri.v0, tri.v1, tri.v2):
            out.write("      vertex {:.6e} {:.6e} {:.6e}\n".format(*v))
        out.write("    endloop\n")
        out.write("  endfacet\n")
    out.write(f"endsolid {name}\n")
    return out.getvalue()


def export_stl(graph: Optional[TopologyGraph], res: int = 38,
               bounds: tuple[float, float] = (-1.7, 1.7),
               name: str = DEFAULT_SOLID_NAME) -> str:
    """Mesh ``graph`` and serialize it; a missing graph is an error, never an
    empty file."""
    if graph is None:
        raise MeshExportError("nothing to export: no compiled topology graph")
    mesh = extract_isosurface(graph, res, bounds)
    if not mesh.triangles:
        logger.warning("isosurface of %d-node graph is empty within bounds %s", graph.node_count, bounds)
    return to_ascii_stl(mesh, name)
