"""Exception taxonomy for script compilation, graph consumption and meshing."""

from typing import Optional


class MorseError(Exception):
    """Base class for every error raised by morse_topo."""

    kind = "error"


class ScriptError(MorseError):
    """An error that aborts compilation of a script.

    ``line`` is the 1-based line of the statement being executed when the
    error surfaced; it is filled in by the interpreter, not by the raiser.
    """

    kind = "script_error"

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"line {self.line}: {self.message}"


class LexError(ScriptError):
    kind = "lex_error"

    def __init__(self, char: str, pos: int, message: Optional[str] = None):
        super().__init__(message or f"unexpected character {char!r} at column {pos + 1}")
        self.char = char
        self.pos = pos


class ParseError(ScriptError):
    kind = "parse_error"


class ArityError(ScriptError):
    kind = "arity_error"


class ScriptTypeError(ScriptError):
    kind = "type_error"


class ScriptValueError(ScriptError):
    kind = "value_error"


class UnknownIdentifier(ScriptError):
    kind = "unknown_identifier"


class UnknownBuiltin(ScriptError):
    kind = "unknown_builtin"


class UnknownMethod(ScriptError):
    kind = "unknown_method"


class DegenerateGeometry(ScriptError):
    kind = "degenerate_geometry"


class NoResultShape(ScriptError):
    kind = "no_result_shape"


class UnsupportedSynthesis(ScriptError):
    kind = "unsupported_synthesis"


class NestingTooDeep(ScriptError):
    kind = "nesting_too_deep"


class GraphError(MorseError):
    """A topology graph is malformed (dangling root, forward reference...)."""

    kind = "graph_error"


class UnsupportedGraphOp(GraphError):
    kind = "unsupported_graph_op"

    def __init__(self, op: str):
        super().__init__(f"unsupported topology op: {op}")
        self.op = op


class MeshExportError(MorseError):
    kind = "mesh_export_error"


class NonFiniteField(MorseError):
    """Evaluation produced inf or NaN (e.g. a division by zero at the point)."""

    kind = "non_finite_field"
