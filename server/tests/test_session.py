"""Tests for per-connection WebSocket session handling."""

import asyncio
import json

import httpx
import pytest

from server.services.analysis_client import AnalysisClient
from server.services.session import Session, handle_analysis, handle_message


def _compile(session, seq, script="result = sphere(1)", **extra):
    return handle_message(session, {"seq": seq, "cmd": "compile", "script": script, **extra})


class TestSequencing:
    def test_requires_integer_seq(self):
        reply = handle_message(Session(), {"cmd": "compile", "script": "result = sphere(1)"})
        assert reply["ok"] == "error"
        assert reply["seq"] == -1

    def test_stale_seq_rejected(self):
        session = Session()
        assert _compile(session, 5)["ok"] == "topology"
        reply = _compile(session, 5)
        assert reply["ok"] == "error"
        assert "stale" in reply["message"]
        assert _compile(session, 3)["ok"] == "error"
        assert session.compiles == 1

    def test_reply_echoes_seq(self):
        session = Session()
        assert _compile(session, 42)["seq"] == 42

    def test_unknown_command(self):
        reply = handle_message(Session(), {"seq": 1, "cmd": "render"})
        assert reply["ok"] == "error"
        assert "unknown command" in reply["message"]


class TestCompile:
    def test_success_stores_graph(self):
        session = Session()
        reply = _compile(session, 1)
        assert reply["topology"]["format"] == "morse.topo.v1"
        assert reply["node_count"] == session.graph.node_count

    def test_failure_keeps_previous_graph(self):
        session = Session()
        _compile(session, 1)
        good = session.graph
        reply = _compile(session, 2, "result = sphere(")
        assert reply["ok"] == "error"
        assert reply["error_kind"] == "parse_error"
        assert reply["line"] == 1
        assert session.graph is good
        assert session.failures == 1

    def test_missing_script(self):
        reply = handle_message(Session(), {"seq": 1, "cmd": "compile"})
        assert reply["ok"] == "error"

    def test_scene_name_sanitised(self):
        session = Session()
        _compile(session, 1, scene="../my ring")
        assert session.scene == "___my_ring"


class TestExportAndEval:
    def test_export_without_graph(self):
        reply = handle_message(Session(), {"seq": 1, "cmd": "export_stl"})
        assert reply["ok"] == "error"
        assert reply["error_kind"] == "mesh_export_error"

    def test_export_after_compile(self):
        session = Session()
        _compile(session, 1, scene="ball")
        reply = handle_message(session, {
            "seq": 2, "cmd": "export_stl", "resolution": 12, "bounds_min": -1.5, "bounds_max": 1.5,
        })
        assert reply["ok"] == "stl"
        assert reply["filename"] == "ball-topology.stl"
        assert reply["stl"].startswith("solid ball-topology")
        assert reply["stats"]["triangles"] > 0

    def test_export_resolution_out_of_range(self):
        session = Session()
        _compile(session, 1)
        reply = handle_message(session, {"seq": 2, "cmd": "export_stl", "resolution": 1})
        assert reply["ok"] == "error"

    def test_eval(self):
        session = Session()
        _compile(session, 1)
        reply = handle_message(session, {"seq": 2, "cmd": "eval", "x": 0, "y": 0, "z": 0})
        assert reply["ok"] == "eval"
        assert reply["value"] == -1.0

    def test_eval_without_graph(self):
        reply = handle_message(Session(), {"seq": 1, "cmd": "eval"})
        assert reply["ok"] == "error"

    def test_eval_bad_coordinate(self):
        session = Session()
        _compile(session, 1)
        reply = handle_message(session, {"seq": 2, "cmd": "eval", "x": "left"})
        assert reply["ok"] == "error"
        assert "bad request" in reply["message"]

    @pytest.mark.parametrize("coord", [float("inf"), float("nan")])
    def test_eval_non_finite_coordinate(self, coord):
        session = Session()
        _compile(session, 1)
        reply = handle_message(session, {"seq": 2, "cmd": "eval", "x": coord})
        assert reply["ok"] == "error"
        assert "finite" in reply["message"]

    def test_eval_non_finite_value(self):
        session = Session()
        _compile(session, 1, "result = sphere(1):at(" + "9" * 160 + ", 0, 0)")
        reply = handle_message(session, {"seq": 2, "cmd": "eval", "x": 0, "y": 0, "z": 0})
        assert reply["ok"] == "error"
        assert reply["error_kind"] == "non_finite_field"


class TestGradAndInterval:
    def test_grad(self):
        session = Session()
        _compile(session, 1)
        reply = handle_message(session, {"seq": 2, "cmd": "grad", "x": 0.6, "y": 0.8, "z": 0.0})
        assert reply["ok"] == "grad"
        assert reply["seq"] == 2
        assert reply["value"] == pytest.approx(0.0, abs=1e-12)
        assert reply["grad"] == pytest.approx([1.2, 1.6, 0.0])

    def test_grad_without_graph(self):
        reply = handle_message(Session(), {"seq": 1, "cmd": "grad"})
        assert reply["ok"] == "error"

    def test_interval(self):
        session = Session()
        _compile(session, 1)
        reply = handle_message(session, {"seq": 2, "cmd": "interval", "min": [2, 2, 2], "max": [3, 3, 3]})
        assert reply["ok"] == "interval"
        assert reply["lo"] == 11.0
        assert reply["hi"] == 26.0

    def test_interval_contains_surface(self):
        session = Session()
        _compile(session, 1)
        reply = handle_message(session, {"seq": 2, "cmd": "interval", "min": [-2, -2, -2], "max": [2, 2, 2]})
        assert reply["lo"] <= 0.0 <= reply["hi"]

    @pytest.mark.parametrize("box", [
        {"min": [0, 0, 0]},
        {"min": [0, 0], "max": [1, 1]},
        {"min": [1, 0, 0], "max": [0, 0, 0]},
        {"min": [0, 0, 0], "max": [1, 1, "far"]},
    ])
    def test_interval_bad_box(self, box):
        session = Session()
        _compile(session, 1)
        reply = handle_message(session, {"seq": 2, "cmd": "interval", **box})
        assert reply["ok"] == "error"


def _analysis(handler):
    return AnalysisClient(base_url="http://analysis.test", transport=httpx.MockTransport(handler))


class TestAnalysisCommands:
    def test_glsl(self):
        def handler(request):
            payload = json.loads(request.content)
            assert payload["topology"]["format"] == "morse.topo.v1"
            return httpx.Response(200, json={"ok": "glsl", "seq": payload["seq"], "code": "float f;"})

        session = Session(analysis=_analysis(handler))
        _compile(session, 1)
        reply = asyncio.run(handle_analysis(session, {"seq": 2, "cmd": "glsl"}))
        assert reply == {"ok": "glsl", "seq": 2, "code": "float f;"}

    def test_critical(self):
        def handler(request):
            payload = json.loads(request.content)
            assert payload["x"] == 0.25
            return httpx.Response(200, json={
                "ok": "critical", "seq": payload["seq"], "found": True,
                "x": 0.0, "y": 0.0, "z": 0.0, "f": -1.0, "index": 0,
            })

        session = Session(analysis=_analysis(handler))
        _compile(session, 1)
        reply = asyncio.run(handle_analysis(session, {"seq": 2, "cmd": "critical", "x": 0.25}))
        assert reply["ok"] == "critical"
        assert reply["index"] == 0

    def test_unconfigured(self):
        session = Session(analysis=AnalysisClient(base_url=""))
        _compile(session, 1)
        reply = asyncio.run(handle_analysis(session, {"seq": 2, "cmd": "glsl"}))
        assert reply["ok"] == "error"
        assert "not configured" in reply["message"]

    def test_service_error(self):
        session = Session(analysis=_analysis(lambda request: httpx.Response(503)))
        _compile(session, 1)
        reply = asyncio.run(handle_analysis(session, {"seq": 2, "cmd": "glsl"}))
        assert reply["ok"] == "error"
        assert "analysis error" in reply["message"]

    def test_newer_request_supersedes_older(self):
        async def scenario(session):
            release = asyncio.Event()

            async def handler(request):
                payload = json.loads(request.content)
                if payload["seq"] == 1:
                    await release.wait()
                else:
                    release.set()
                return httpx.Response(200, json={"ok": "glsl", "seq": payload["seq"], "code": "c"})

            session.analysis = _analysis(handler)
            return await asyncio.gather(
                handle_analysis(session, {"seq": 2, "cmd": "glsl"}),
                handle_analysis(session, {"seq": 3, "cmd": "glsl"}),
            )

        session = Session()
        _compile(session, 1)
        older, newer = asyncio.run(scenario(session))
        assert older["ok"] == "error"
        assert older["stale"] is True
        assert newer["ok"] == "glsl"

    def test_sessions_do_not_supersede_each_other(self):
        async def scenario(first, second):
            arrived = []
            both = asyncio.Event()

            async def handler(request):
                payload = json.loads(request.content)
                arrived.append(payload["seq"])
                if len(arrived) == 2:
                    both.set()
                await both.wait()
                return httpx.Response(200, json={"ok": "glsl", "seq": payload["seq"], "code": "c"})

            first.analysis = _analysis(handler)
            second.analysis = _analysis(handler)
            return await asyncio.gather(
                handle_analysis(first, {"seq": 2, "cmd": "glsl"}),
                handle_analysis(second, {"seq": 2, "cmd": "glsl"}),
            )

        first, second = Session(), Session()
        _compile(first, 1)
        _compile(second, 1)
        assert [r["ok"] for r in asyncio.run(scenario(first, second))] == ["glsl", "glsl"]

    def test_stale_session_seq(self):
        session = Session()
        _compile(session, 4)
        reply = asyncio.run(handle_analysis(session, {"seq": 3, "cmd": "glsl"}))
        assert reply["ok"] == "error"
        assert "stale" in reply["message"]
