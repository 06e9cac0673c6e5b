"""morse-topo FastAPI server: compile scene scripts to topology graphs and meshes."""

import asyncio
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response

import morse_topo
from morse_topo import GraphError, MorseError

from server.models import (
    AnalysisRequest,
    CompileRequest,
    CompileResponse,
    EvalRequest,
    EvalResponse,
    GradResponse,
    HealthResponse,
    IntervalRequest,
    IntervalResponse,
    MeshRequest,
    ValidateRequest,
    ValidateResponse,
)
from server.services import topo_service
from server.services.analysis_client import AnalysisClient, StaleResponse
from server.services.session import ANALYSIS_COMMANDS, Session, handle_analysis, handle_message
from server.scenes.examples import EXAMPLES
from server import config

logger = logging.getLogger(__name__)

app = FastAPI(
    title="morse-topo",
    description="Compile scene scripts into implicit-field topology graphs and STL meshes",
    version=morse_topo.version(),
)


def _analysis_client() -> AnalysisClient:
    """A client per request, so concurrent callers never supersede each other."""
    return AnalysisClient()


async def _in_executor(fn, *args):
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, fn, *args)


# ── REST Endpoints ──────────────────────────────────────────────


@app.get("/api/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="ok",
        version=morse_topo.version(),
        format=morse_topo.FORMAT,
        analysis=bool(config.ANALYSIS_URL),
    )


@app.post("/api/compile", response_model=CompileResponse)
async def compile_script(req: CompileRequest):
    try:
        result = await _in_executor(topo_service.compile_script, req.script)
    except MorseError as e:
        return CompileResponse(**topo_service.error_fields(e))

    geometry = result.ring_geometry.to_dict() if result.ring_geometry else None
    return CompileResponse(
        topology=result.graph.to_dict(),
        node_count=result.graph.node_count,
        ring_geometry=geometry,
        timings=result.timings,
    )


@app.post("/api/validate", response_model=ValidateResponse)
async def validate(req: ValidateRequest):
    valid, node_count, err = await _in_executor(topo_service.validate_script, req.script)
    if err is not None:
        return ValidateResponse(valid=False, **topo_service.error_fields(err))
    return ValidateResponse(valid=valid, node_count=node_count)


@app.post("/api/eval", response_model=EvalResponse)
async def evaluate(req: EvalRequest):
    try:
        graph = topo_service.parse_topology(req.topology)
        return EvalResponse(value=topo_service.evaluate(graph, req.x, req.y, req.z))
    except MorseError as e:
        return EvalResponse(error=str(e), error_kind=e.kind)


@app.post("/api/grad", response_model=GradResponse)
async def grad(req: EvalRequest):
    try:
        graph = topo_service.parse_topology(req.topology)
        return GradResponse(**topo_service.gradient(graph, req.x, req.y, req.z))
    except MorseError as e:
        return GradResponse(error=str(e), error_kind=e.kind)


@app.post("/api/interval", response_model=IntervalResponse)
async def interval(req: IntervalRequest):
    try:
        graph = topo_service.parse_topology(req.topology)
        return IntervalResponse(**topo_service.interval(graph, req.min, req.max))
    except MorseError as e:
        return IntervalResponse(error=str(e), error_kind=e.kind)


@app.post("/api/mesh")
async def mesh(req: MeshRequest):
    try:
        data, stats = await _in_executor(
            topo_service.full_pipeline,
            req.script if req.script is not None else req.topology,
            req.resolution,
            (req.bounds_min, req.bounds_max),
            req.name,
        )
    except MorseError as e:
        return JSONResponse(status_code=422, content=topo_service.error_fields(e))

    return Response(
        content=data,
        media_type="model/stl",
        headers={
            "Content-Disposition": f'attachment; filename="{req.name}.stl"',
            "X-Triangles": str(stats["triangles"]),
        },
    )


@app.post("/api/analysis")
async def analyze(req: AnalysisRequest):
    analysis = _analysis_client()
    if not analysis.configured:
        return JSONResponse(status_code=503, content={"error": "analysis service not configured"})
    try:
        graph = topo_service.parse_topology(req.topology)
    except GraphError as e:
        return JSONResponse(status_code=422, content={"error": str(e)})

    try:
        if req.cmd == "glsl":
            return {"code": await analysis.shader_source(graph)}
        return await analysis.critical_point(graph, req.x, req.y, req.z)
    except StaleResponse as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    except Exception as e:
        logger.warning("analysis request failed: %s", e)
        return JSONResponse(status_code=502, content={"error": f"Analysis error: {e}"})


@app.get("/api/examples")
async def examples():
    return [
        {
            "name": ex["name"],
            "description": ex["description"],
            "script": ex["script"],
            "bounds": list(ex["bounds"]),
            "resolution": ex["resolution"],
        }
        for ex in EXAMPLES
    ]


# ── WebSocket Endpoint ──────────────────────────────────────────


@app.websocket("/ws/session")
async def ws_session(ws: WebSocket):
    await ws.accept()
    session = Session()
    send_lock = asyncio.Lock()
    pending: set[asyncio.Task] = set()

    async def send(reply: dict):
        async with send_lock:
            await ws.send_json(reply)

    async def run_analysis(msg: dict):
        await send(await handle_analysis(session, msg))

    try:
        while True:
            data = await ws.receive_json()
            if not isinstance(data, dict):
                await send({"ok": "error", "seq": -1, "message": "expected a JSON object"})
                continue
            if data.get("cmd") in ANALYSIS_COMMANDS:
                # replies arrive out of order; the seq tells them apart
                task = asyncio.create_task(run_analysis(data))
                pending.add(task)
                task.add_done_callback(pending.discard)
                continue
            reply = await _in_executor(handle_message, session, data)
            await send(reply)
    except WebSocketDisconnect:
        logger.info(
            "session closed: %d compiles, %d failures", session.compiles, session.failures
        )
    finally:
        for task in list(pending):
            task.cancel()


# ── Main ────────────────────────────────────────────────────────


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=config.LOG_LEVEL)
    uvicorn.run(
        "server.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=True,
    )
