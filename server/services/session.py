"""Per-connection session state for the /ws/session endpoint.

Each WebSocket owns one Session; nothing is shared between connections.
Every reply echoes the request's ``seq`` so a client can discard replies
to requests it has since superseded. Analysis commands go through the
session's own AnalysisClient, so a newer ``glsl`` request only supersedes
older ones from the same connection.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Optional

import httpx

from morse_topo import MorseError, TopologyGraph

from server import config
from server.services import topo_service
from server.services.analysis_client import AnalysisClient, StaleResponse

logger = logging.getLogger(__name__)

ANALYSIS_COMMANDS = ("glsl", "critical")


@dataclass
class Session:
    graph: Optional[TopologyGraph] = None
    scene: str = "untitled"
    last_seq: int = 0
    compiles: int = 0
    failures: int = 0
    analysis: AnalysisClient = field(default_factory=AnalysisClient)


def _reply(kind: str, seq: int, **payload) -> dict:
    return {"ok": kind, "seq": seq, **payload}


def _error(seq: int, message: str, **extra) -> dict:
    return _reply("error", seq, message=message, **extra)


def _morse_error(seq: int, err: MorseError) -> dict:
    fields = topo_service.error_fields(err)
    return _error(seq, fields.pop("error"), **fields)


def _claim_seq(session: Session, msg: dict) -> tuple[int, Optional[dict]]:
    """The request's seq, plus an error reply if it is missing or stale."""
    seq = msg.get("seq")
    if not isinstance(seq, int):
        return -1, _error(-1, "request needs an integer 'seq'")
    if seq <= session.last_seq:
        return seq, _error(seq, f"stale request: seq {seq} is not after {session.last_seq}")
    session.last_seq = seq
    return seq, None


def _point(msg: dict) -> tuple[float, float, float]:
    x, y, z = (float(msg.get(k, 0.0)) for k in ("x", "y", "z"))
    if not all(math.isfinite(v) for v in (x, y, z)):
        raise ValueError("coordinates must be finite")
    return x, y, z


def handle_message(session: Session, msg: dict) -> dict:
    """Route one inbound message and return the reply."""
    seq, rejected = _claim_seq(session, msg)
    if rejected is not None:
        return rejected

    cmd = msg.get("cmd")
    try:
        if cmd == "compile":
            return _compile(session, seq, msg)
        if cmd == "export_stl":
            return _export_stl(session, seq, msg)
        if cmd == "eval":
            return _eval(session, seq, msg)
        if cmd == "grad":
            return _grad(session, seq, msg)
        if cmd == "interval":
            return _interval(session, seq, msg)
    except MorseError as e:
        return _morse_error(seq, e)
    except (TypeError, ValueError) as e:
        return _error(seq, f"bad request: {e}")
    return _error(seq, f"unknown command: {cmd!r}")


async def handle_analysis(session: Session, msg: dict) -> dict:
    """Forward a ``glsl`` or ``critical`` request for the session's graph."""
    seq, rejected = _claim_seq(session, msg)
    if rejected is not None:
        return rejected
    if session.graph is None:
        return _error(seq, "no compiled topology graph in this session")
    if not session.analysis.configured:
        return _error(seq, "analysis service not configured")

    try:
        if msg.get("cmd") == "glsl":
            code = await session.analysis.shader_source(session.graph)
            return _reply("glsl", seq, code=code)
        report = await session.analysis.critical_point(session.graph, *_point(msg))
        return _reply("critical", seq, **report)
    except StaleResponse as e:
        return _error(seq, str(e), stale=True)
    except (TypeError, ValueError) as e:
        return _error(seq, f"bad request: {e}")
    except (httpx.HTTPError, RuntimeError, KeyError) as e:
        logger.warning("session analysis request failed: %s", e)
        return _error(seq, f"analysis error: {e}")


def _compile(session: Session, seq: int, msg: dict) -> dict:
    script = msg.get("script")
    if not isinstance(script, str):
        return _error(seq, "compile needs a 'script' string")
    try:
        result = topo_service.compile_script(script)
    except MorseError:
        # the last good graph stays current
        session.failures += 1
        raise
    session.graph = result.graph
    session.scene = re.sub(r"[^A-Za-z0-9_\-]", "_", str(msg.get("scene") or session.scene))
    session.compiles += 1
    return _reply(
        "topology",
        seq,
        topology=result.graph.to_dict(),
        node_count=result.graph.node_count,
    )


def _export_stl(session: Session, seq: int, msg: dict) -> dict:
    resolution = int(msg.get("resolution", config.DEFAULT_RESOLUTION))
    if not 2 <= resolution <= config.MAX_RESOLUTION:
        return _error(seq, f"resolution must be between 2 and {config.MAX_RESOLUTION}")
    bounds = (
        float(msg.get("bounds_min", config.DEFAULT_BOUNDS[0])),
        float(msg.get("bounds_max", config.DEFAULT_BOUNDS[1])),
    )
    if not all(math.isfinite(b) for b in bounds):
        return _error(seq, "bounds must be finite")
    mesh, stats = topo_service.generate_mesh(session.graph, bounds, resolution)
    name = f"{session.scene}-topology"
    stl = topo_service.export_mesh_stl(mesh, name).decode("ascii")
    logger.info("session export: %s, %d triangles", name, stats["triangles"])
    return _reply("stl", seq, filename=f"{name}.stl", stl=stl, stats=stats)


def _eval(session: Session, seq: int, msg: dict) -> dict:
    if session.graph is None:
        return _error(seq, "no compiled topology graph in this session")
    return _reply("eval", seq, value=topo_service.evaluate(session.graph, *_point(msg)))


def _grad(session: Session, seq: int, msg: dict) -> dict:
    if session.graph is None:
        return _error(seq, "no compiled topology graph in this session")
    return _reply("grad", seq, **topo_service.gradient(session.graph, *_point(msg)))


def _interval(session: Session, seq: int, msg: dict) -> dict:
    if session.graph is None:
        return _error(seq, "no compiled topology graph in this session")
    lo, hi = msg.get("min"), msg.get("max")
    if not isinstance(lo, list) or not isinstance(hi, list):
        return _error(seq, "interval needs 'min' and 'max' corner lists")
    return _reply("interval", seq, **topo_service.interval(session.graph, lo, hi))
