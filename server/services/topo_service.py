"""Topology service - wraps morse_topo for compiling, meshing and export."""

import logging
import math
import time
from typing import Optional, Union

import morse_topo
from morse_topo import CompileResult, MorseError, NonFiniteField, ScriptError, TopologyGraph

from server import config

logger = logging.getLogger(__name__)


def error_fields(err: MorseError) -> dict:
    """Response fields describing a failed compile or graph operation."""
    return {
        "error": str(err),
        "error_kind": err.kind,
        "line": err.line if isinstance(err, ScriptError) else None,
    }


def validate_script(script: str) -> tuple[bool, Optional[int], Optional[MorseError]]:
    """Compile a script without keeping the result.

    Returns (valid, node_count, error).
    """
    try:
        result = morse_topo.compile_script(script)
        return True, result.graph.node_count, None
    except MorseError as e:
        return False, None, e


def compile_script(script: str) -> CompileResult:
    result = morse_topo.compile_script(script)
    logger.info(
        "compiled script: %d nodes (%.2fms)",
        result.graph.node_count,
        sum(result.timings.values()),
    )
    return result


def parse_topology(data: dict) -> TopologyGraph:
    """Load a wire-format topology dict into a TopologyGraph."""
    return TopologyGraph.from_dict(data)


def _finite(value: float, what: str, x: float, y: float, z: float) -> float:
    if not math.isfinite(value):
        raise NonFiniteField(f"{what} at ({x}, {y}, {z}) is not finite: {value}")
    return value


def evaluate(graph: TopologyGraph, x: float, y: float, z: float) -> float:
    return _finite(morse_topo.evaluate_point(graph, x, y, z), "field value", x, y, z)


def gradient(graph: TopologyGraph, x: float, y: float, z: float) -> dict:
    """Field value and gradient at a point."""
    value, grad = morse_topo.gradient(graph, x, y, z)
    _finite(value, "field value", x, y, z)
    for g in grad:
        _finite(g, "field gradient", x, y, z)
    return {"value": value, "grad": list(grad)}


def interval(graph: TopologyGraph, lo, hi) -> dict:
    """Conservative field bounds over the box [lo, hi].

    An infinite bound comes back as None.
    """
    if len(lo) != 3 or len(hi) != 3:
        raise ValueError("box corners need three coordinates each")
    box = [(float(a), float(b)) for a, b in zip(lo, hi)]
    for a, b in box:
        if not (math.isfinite(a) and math.isfinite(b)) or a > b:
            raise ValueError(f"bad box extent [{a}, {b}]")
    low, high = morse_topo.evaluate_interval(graph, *box)
    return {
        "lo": low if math.isfinite(low) else None,
        "hi": high if math.isfinite(high) else None,
    }


def generate_mesh(
    graph: Optional[TopologyGraph],
    bounds: tuple[float, float] = config.DEFAULT_BOUNDS,
    resolution: int = config.DEFAULT_RESOLUTION,
):
    """Generate mesh from a topology graph. Returns (mesh, stats)."""
    if graph is None:
        raise morse_topo.MeshExportError("no compiled topology graph to mesh")
    t0 = time.perf_counter()
    mesh = morse_topo.extract_isosurface(graph, resolution, bounds)
    elapsed_ms = (time.perf_counter() - t0) * 1000

    return mesh, {
        "vertices": mesh.vertex_count,
        "triangles": mesh.triangle_count,
        "resolution": resolution,
        "mesh_time_ms": round(elapsed_ms, 2),
    }


def export_mesh_stl(mesh, name: str = config.MESH_NAME) -> bytes:
    """Export mesh to ASCII STL bytes."""
    return morse_topo.to_ascii_stl(mesh, name).encode("ascii")


def full_pipeline(
    source: Union[str, dict],
    resolution: int = config.DEFAULT_RESOLUTION,
    bounds: tuple[float, float] = config.DEFAULT_BOUNDS,
    name: str = config.MESH_NAME,
) -> tuple[bytes, dict]:
    """Full pipeline: script or wire-format topology → mesh → STL.

    A string ``source`` is compiled as a scene script; a dict is loaded as
    an already compiled topology graph. Returns (file_bytes, stats).
    """
    timings = {}

    t0 = time.perf_counter()
    if isinstance(source, str):
        graph = compile_script(source).graph
        timings["compile_ms"] = round((time.perf_counter() - t0) * 1000, 2)
    else:
        graph = parse_topology(source)
        timings["parse_ms"] = round((time.perf_counter() - t0) * 1000, 2)

    mesh, mesh_stats = generate_mesh(graph, bounds, resolution)
    timings["mesh_ms"] = mesh_stats["mesh_time_ms"]

    t0 = time.perf_counter()
    data = export_mesh_stl(mesh, name)
    timings["export_ms"] = round((time.perf_counter() - t0) * 1000, 2)

    stats = {
        "node_count": graph.node_count,
        "vertices": mesh_stats["vertices"],
        "triangles": mesh_stats["triangles"],
        "timings": timings,
    }

    return data, stats
