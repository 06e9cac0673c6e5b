"""Client for the remote analysis / codegen service.

The service turns a topology graph into shader source (``glsl_topology``)
or a critical-point report (``critical_topology``). Requests carry a
monotonically increasing ``seq``; a reply is only accepted if it echoes the
seq of its own request and that request is still the newest of its command
sent from the same client, so a slow reply to a superseded graph is dropped
instead of being attributed to the new one.

Supersession is per client: callers that must not cancel each other (two
HTTP requests, two sessions) each use their own AnalysisClient.
"""

import itertools
import logging
from typing import Optional

import httpx

from morse_topo import TopologyGraph

from server import config

logger = logging.getLogger(__name__)

GLSL = "glsl_topology"
CRITICAL = "critical_topology"


class StaleResponse(Exception):
    """A reply arrived for a request that has since been superseded."""


class AnalysisClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = config.ANALYSIS_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else config.ANALYSIS_URL
        self.timeout = timeout
        self._transport = transport
        self._seq = itertools.count(1)
        self._latest: dict[str, int] = {}

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def next_request(self, cmd: str, graph: TopologyGraph, **extra) -> dict:
        seq = next(self._seq)
        self._latest[cmd] = seq
        return {"cmd": cmd, "seq": seq, "topology": graph.to_dict(), **extra}

    def accept(self, request: dict, reply: dict) -> dict:
        """Return ``reply`` if it answers ``request`` and nothing newer of the
        same command has been sent from this client since."""
        cmd, seq = request["cmd"], request["seq"]
        if reply.get("seq") != seq:
            logger.warning("dropping mismatched %s reply: seq=%s, sent=%s", cmd, reply.get("seq"), seq)
            raise StaleResponse(f"{cmd} reply seq {reply.get('seq')} does not answer request {seq}")
        latest = self._latest.get(cmd)
        if seq != latest:
            logger.info("dropping superseded %s reply: seq=%s, latest=%s", cmd, seq, latest)
            raise StaleResponse(f"{cmd} request {seq} was superseded by {latest}")
        if reply.get("ok") == "error":
            raise RuntimeError(f"analysis service error: {reply.get('message')}")
        return reply

    async def _post(self, payload: dict) -> dict:
        if not self.configured:
            raise RuntimeError("ANALYSIS_URL is not configured")
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            resp = await client.post("/analyze", json=payload)
            resp.raise_for_status()
            return resp.json()

    async def shader_source(self, graph: TopologyGraph) -> str:
        payload = self.next_request(GLSL, graph)
        reply = self.accept(payload, await self._post(payload))
        return reply["code"]

    async def critical_point(self, graph: TopologyGraph, x: float, y: float, z: float) -> dict:
        payload = self.next_request(CRITICAL, graph, x=x, y=y, z=z)
        reply = self.accept(payload, await self._post(payload))
        return {k: reply[k] for k in ("found", "x", "y", "z", "f", "index") if k in reply}
