"""Tests for FastAPI endpoints (the analysis service is mocked)."""

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient
from server import config, main
from server.main import app
from server.services.analysis_client import AnalysisClient

client = TestClient(app)


SPHERE_SCRIPT = "result = sphere(1.0)"


def _compile(script):
    resp = client.post("/api/compile", json={"script": script})
    assert resp.status_code == 200
    return resp.json()


class TestHealthEndpoint:
    def test_health(self):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["format"] == "morse.topo.v1"
        assert "version" in data
        assert "analysis" in data


class TestCompileEndpoint:
    def test_compile_sphere(self):
        data = _compile(SPHERE_SCRIPT)
        assert data["error"] is None
        topo = data["topology"]
        assert topo["format"] == "morse.topo.v1"
        assert topo["root"] in {n["id"] for n in topo["nodes"]}
        assert data["node_count"] == len(topo["nodes"])

    def test_compile_unknown_builtin(self):
        data = _compile("result = foo(1)")
        assert data["topology"] is None
        assert data["error_kind"] == "unknown_builtin"
        assert data["line"] == 1

    def test_compile_ring_reports_geometry(self):
        data = _compile("result = synthesize(require_coverslip(20), require_center_hole(25))")
        assert data["ring_geometry"]["hole_radius"] == pytest.approx(12.5)


    def test_compile_non_ascii_digit(self):
        data = _compile("result = sphere(²)")
        assert data["topology"] is None
        assert data["error_kind"] == "lex_error"
        assert data["line"] == 1

    def test_compile_deep_nesting(self):
        data = _compile("result = sphere(" + "(" * 5000 + "1" + ")" * 5000 + ")")
        assert data["topology"] is None
        assert data["error_kind"] == "nesting_too_deep"
        assert data["line"] == 1


class TestValidateEndpoint:
    def test_valid_script(self):
        resp = client.post("/api/validate", json={"script": SPHERE_SCRIPT})
        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is True
        assert data["node_count"] > 0

    def test_invalid_script(self):
        resp = client.post("/api/validate", json={"script": "result = tube(1, 2, 1)"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is False
        assert data["error_kind"] == "degenerate_geometry"


class TestEvalEndpoint:
    def test_eval_center(self):
        topo = _compile(SPHERE_SCRIPT)["topology"]
        resp = client.post("/api/eval", json={"topology": topo, "x": 0, "y": 0, "z": 0})
        assert resp.status_code == 200
        assert resp.json()["value"] == pytest.approx(-1.0)

    def test_eval_bad_graph(self):
        topo = {"nodes": [{"id": "a", "op": "translate", "inputs": []}], "root": "a"}
        resp = client.post("/api/eval", json={"topology": topo})
        assert resp.status_code == 200
        assert "unsupported topology op" in resp.json()["error"]

    def test_eval_zero_smooth_factor(self):
        topo = {
            "nodes": [
                {"id": "a", "op": "x"},
                {"id": "b", "op": "y"},
                {"id": "c", "op": "smin", "inputs": ["a", "b"], "params": {"k": 0}},
            ],
            "root": "c",
        }
        resp = client.post("/api/eval", json={"topology": topo})
        assert resp.status_code == 200
        assert resp.json()["error_kind"] == "graph_error"
        assert "k" in resp.json()["error"]

    def test_eval_division_by_zero(self):
        topo = {
            "nodes": [
                {"id": "one", "op": "const", "params": {"value": 1.0}},
                {"id": "px", "op": "x"},
                {"id": "q", "op": "div", "inputs": ["one", "px"]},
            ],
            "root": "q",
        }
        resp = client.post("/api/eval", json={"topology": topo, "x": 0})
        assert resp.status_code == 200
        data = resp.json()
        assert data["value"] is None
        assert data["error_kind"] == "non_finite_field"


class TestGradEndpoint:
    def test_sphere_gradient(self):
        topo = _compile(SPHERE_SCRIPT)["topology"]
        resp = client.post("/api/grad", json={"topology": topo, "x": 0.6, "y": 0.8, "z": 0})
        assert resp.status_code == 200
        data = resp.json()
        assert data["value"] == pytest.approx(0.0, abs=1e-12)
        assert data["grad"] == pytest.approx([1.2, 1.6, 0.0])

    def test_bad_graph(self):
        topo = {"nodes": [{"id": "a", "op": "translate"}], "root": "a"}
        data = client.post("/api/grad", json={"topology": topo}).json()
        assert data["grad"] is None
        assert data["error_kind"] == "unsupported_graph_op"


class TestIntervalEndpoint:
    def test_sphere_box_outside(self):
        topo = _compile(SPHERE_SCRIPT)["topology"]
        resp = client.post("/api/interval", json={"topology": topo, "min": [2, 2, 2], "max": [3, 3, 3]})
        assert resp.status_code == 200
        assert resp.json()["lo"] == pytest.approx(11.0)
        assert resp.json()["hi"] == pytest.approx(26.0)

    def test_unbounded_is_null(self):
        topo = {
            "nodes": [
                {"id": "one", "op": "const", "params": {"value": 1.0}},
                {"id": "px", "op": "x"},
                {"id": "q", "op": "div", "inputs": ["one", "px"]},
            ],
            "root": "q",
        }
        data = client.post("/api/interval", json={"topology": topo, "min": [-1, 0, 0], "max": [1, 0, 0]}).json()
        assert data["lo"] is None
        assert data["hi"] is None
        assert data["error"] is None

    def test_inverted_box(self):
        topo = _compile(SPHERE_SCRIPT)["topology"]
        resp = client.post("/api/interval", json={"topology": topo, "min": [1, 0, 0], "max": [0, 0, 0]})
        assert resp.status_code == 422


class TestMeshEndpoint:
    def test_mesh_from_script(self):
        resp = client.post(
            "/api/mesh",
            json={
                "script": SPHERE_SCRIPT,
                "resolution": 16,
                "bounds_min": -1.5,
                "bounds_max": 1.5,
                "name": "ball",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "model/stl"
        assert 'filename="ball.stl"' in resp.headers["content-disposition"]
        assert resp.content.startswith(b"solid ball")
        assert int(resp.headers["x-triangles"]) > 0

    def test_mesh_from_topology(self):
        topo = _compile(SPHERE_SCRIPT)["topology"]
        resp = client.post(
            "/api/mesh",
            json={"topology": topo, "resolution": 12, "bounds_min": -1.5, "bounds_max": 1.5},
        )
        assert resp.status_code == 200
        assert b"facet normal" in resp.content

    def test_mesh_compile_error(self):
        resp = client.post("/api/mesh", json={"script": "result = tube(1, 2, 1)"})
        assert resp.status_code == 422
        assert resp.json()["error_kind"] == "degenerate_geometry"

    def test_mesh_needs_one_source(self):
        resp = client.post("/api/mesh", json={"resolution": 12})
        assert resp.status_code == 422

    def test_mesh_bad_topology(self):
        topo = {"nodes": [{"id": "a", "op": "add", "inputs": ["b", "b"]}], "root": "a"}
        resp = client.post("/api/mesh", json={"topology": topo, "resolution": 8})
        assert resp.status_code == 422
        assert resp.json()["error_kind"] == "graph_error"


class TestAnalysisEndpoint:
    def test_unconfigured(self, monkeypatch):
        monkeypatch.setattr(config, "ANALYSIS_URL", "")
        topo = _compile(SPHERE_SCRIPT)["topology"]
        resp = client.post("/api/analysis", json={"cmd": "glsl", "topology": topo})
        assert resp.status_code == 503

    def test_overlapping_callers_both_answered(self, monkeypatch):
        arrived = []
        both = asyncio.Event()

        async def handler(request):
            payload = json.loads(request.content)
            arrived.append(payload["seq"])
            if len(arrived) == 2:
                both.set()
            await both.wait()
            return httpx.Response(200, json={"ok": "glsl", "seq": payload["seq"], "code": "void main() {}"})

        monkeypatch.setattr(
            main, "_analysis_client",
            lambda: AnalysisClient(base_url="http://analysis.test", transport=httpx.MockTransport(handler)),
        )
        topo = _compile(SPHERE_SCRIPT)["topology"]

        async def scenario():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
                return await asyncio.gather(
                    http.post("/api/analysis", json={"cmd": "glsl", "topology": topo}),
                    http.post("/api/analysis", json={"cmd": "glsl", "topology": topo}),
                )

        first, second = asyncio.run(scenario())
        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["code"] == "void main() {}"

    def test_mismatched_reply_seq(self, monkeypatch):
        def handler(request):
            payload = json.loads(request.content)
            return httpx.Response(200, json={"ok": "glsl", "seq": payload["seq"] + 7, "code": ""})

        monkeypatch.setattr(
            main, "_analysis_client",
            lambda: AnalysisClient(base_url="http://analysis.test", transport=httpx.MockTransport(handler)),
        )
        topo = _compile(SPHERE_SCRIPT)["topology"]
        resp = client.post("/api/analysis", json={"cmd": "glsl", "topology": topo})
        assert resp.status_code == 409


class TestExamplesEndpoint:
    def test_examples(self):
        resp = client.get("/api/examples")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data) >= 5
        for ex in data:
            assert "name" in ex
            assert "script" in ex
            assert len(ex["bounds"]) == 2


class TestSessionWebSocket:
    def test_compile_then_export(self):
        with client.websocket_connect("/ws/session") as ws:
            ws.send_json({"cmd": "compile", "seq": 1, "script": SPHERE_SCRIPT, "scene": "ball"})
            reply = ws.receive_json()
            assert reply["ok"] == "topology"
            assert reply["seq"] == 1

            ws.send_json({"cmd": "export_stl", "seq": 2, "resolution": 12,
                          "bounds_min": -1.5, "bounds_max": 1.5})
            reply = ws.receive_json()
            assert reply["ok"] == "stl"
            assert reply["seq"] == 2
            assert reply["filename"] == "ball-topology.stl"
            assert reply["stl"].startswith("solid ball-topology")

    def test_failed_compile_keeps_previous_graph(self):
        with client.websocket_connect("/ws/session") as ws:
            ws.send_json({"cmd": "compile", "seq": 1, "script": SPHERE_SCRIPT})
            assert ws.receive_json()["ok"] == "topology"

            ws.send_json({"cmd": "compile", "seq": 2, "script": "result = foo(1)"})
            reply = ws.receive_json()
            assert reply["ok"] == "error"
            assert reply["error_kind"] == "unknown_builtin"

            ws.send_json({"cmd": "eval", "seq": 3, "x": 0, "y": 0, "z": 0})
            reply = ws.receive_json()
            assert reply["ok"] == "eval"
            assert reply["value"] == pytest.approx(-1.0)

    def test_export_without_graph(self):
        with client.websocket_connect("/ws/session") as ws:
            ws.send_json({"cmd": "export_stl", "seq": 1})
            reply = ws.receive_json()
            assert reply["ok"] == "error"
            assert reply["error_kind"] == "mesh_export_error"
