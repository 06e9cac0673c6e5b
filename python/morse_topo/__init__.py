from morse_topo.errors import (
    ArityError,
    DegenerateGeometry,
    GraphError,
    LexError,
    MeshExportError,
    MorseError,
    NestingTooDeep,
    NoResultShape,
    NonFiniteField,
    ParseError,
    ScriptError,
    ScriptTypeError,
    ScriptValueError,
    UnknownBuiltin,
    UnknownIdentifier,
    UnknownMethod,
    UnsupportedGraphOp,
    UnsupportedSynthesis,
)
from morse_topo.field import evaluate, evaluate_interval, evaluate_point, gradient
from morse_topo.interpreter import CompileResult, compile_script
from morse_topo.mesher import Mesh, Triangle, export_stl, extract_isosurface, to_ascii_stl
from morse_topo.topology import FORMAT, Signature, TopologyGraph

__version__ = "0.1.0"


def version() -> str:
    return __version__


def from_json(text) -> TopologyGraph:
    return TopologyGraph.from_json(text)


def to_json(graph: TopologyGraph) -> str:
    return graph.to_json()


__all__ = [
    # Classes
    "TopologyGraph",
    "Signature",
    "CompileResult",
    "Mesh",
    "Triangle",
    # Core functions
    "compile_script",
    "evaluate",
    "evaluate_point",
    "gradient",
    "evaluate_interval",
    "extract_isosurface",
    "version",
    # I/O functions
    "to_ascii_stl",
    "export_stl",
    "from_json",
    "to_json",
    "FORMAT",
    # Errors
    "MorseError",
    "ScriptError",
    "LexError",
    "ParseError",
    "ArityError",
    "ScriptTypeError",
    "ScriptValueError",
    "UnknownIdentifier",
    "UnknownBuiltin",
    "UnknownMethod",
    "DegenerateGeometry",
    "NoResultShape",
    "NestingTooDeep",
    "UnsupportedSynthesis",
    "GraphError",
    "UnsupportedGraphOp",
    "MeshExportError",
    "NonFiniteField",
]
