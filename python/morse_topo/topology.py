"""Topology graph: the serializable IR handed to the evaluator, mesher and
remote analysis service.

Wire format (``morse.topo.v1``)::

    {"format": "morse.topo.v1",
     "invariants": ["field_is_truth", ...],
     "signature": {"betti_hint": [1, 0, 0], "euler_hint": 1, "genus_hint": 0},
     "nodes": [{"id": "n0", "op": "x", "inputs": []}, ...],
     "root": "n7"}
"""

import json
import math
from dataclasses import dataclass, field
from typing import Union

from morse_topo.errors import GraphError, UnsupportedGraphOp
from morse_topo.graph import OPS, GraphBuilder, Node

FORMAT = "morse.topo.v1"
DEFAULT_INVARIANTS = (
    "field_is_truth",
    "no_mesh_in_critical_path",
    "single_expression_graph",
)

_ARITY = {
    "const": 0, "x": 0, "y": 0, "z": 0,
    "neg": 1, "sin": 1, "cos": 1, "exp": 1,
    "add": 2, "sub": 2, "mul": 2, "div": 2,
    "min": 2, "max": 2, "smin": 2, "smax": 2,
}


def _is_finite_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


@dataclass(frozen=True)
class Signature:
    betti_hint: tuple[int, int, int] = (1, 0, 0)
    euler_hint: int = 1
    genus_hint: int = 0

    def to_dict(self) -> dict:
        return {
            "betti_hint": list(self.betti_hint),
            "euler_hint": self.euler_hint,
            "genus_hint": self.genus_hint,
        }


@dataclass(frozen=True)
class TopologyGraph:
    nodes: tuple[Node, ...]
    root: int
    format: str = FORMAT
    invariants: tuple[str, ...] = DEFAULT_INVARIANTS
    signature: Signature = field(default_factory=Signature)

    def __post_init__(self):
        if not self.nodes:
            raise GraphError("topology graph has no nodes")
        for index, node in enumerate(self.nodes):
            if node.op not in OPS:
                raise UnsupportedGraphOp(node.op)
            if node.id != index:
                raise GraphError(f"node {node.id} is out of order (expected id {index})")
            if len(node.inputs) != _ARITY[node.op]:
                raise GraphError(
                    f"node n{node.id} ({node.op}) expects {_ARITY[node.op]} inputs, "
                    f"got {len(node.inputs)}"
                )
            for i in node.inputs:
                if not 0 <= i < index:
                    raise GraphError(f"node n{node.id} references n{i} which is not emitted before it")
            if node.op == "const":
                if "value" not in node.params:
                    raise GraphError(f"const node n{node.id} is missing params.value")
                if not _is_finite_number(node.params["value"]):
                    raise GraphError(
                        f"const node n{node.id} value must be a finite number, "
                        f"got {node.params['value']!r}"
                    )
            elif node.op in ("smin", "smax") and "k" in node.params:
                k = node.params["k"]
                if not _is_finite_number(k) or k <= 0:
                    raise GraphError(f"node n{node.id} ({node.op}) needs a positive finite k, got {k!r}")
        if not 0 <= self.root < len(self.nodes):
            raise GraphError(f"root node n{self.root} not found")

    @classmethod
    def from_builder(cls, builder: GraphBuilder, root: int) -> "TopologyGraph":
        return cls(nodes=tuple(builder.nodes), root=root)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def ops(self) -> list[str]:
        return [n.op for n in self.nodes]

    # ── wire format ─────────────────────────────────────────────

    def to_dict(self) -> dict:
        nodes = []
        for node in self.nodes:
            entry = {
                "id": f"n{node.id}",
                "op": node.op,
                "inputs": [f"n{i}" for i in node.inputs],
            }
            if node.params:
                entry["params"] = dict(node.params)
            nodes.append(entry)
        return {
            "format": self.format,
            "invariants": list(self.invariants),
            "signature": self.signature.to_dict(),
            "nodes": nodes,
            "root": f"n{self.root}",
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TopologyGraph":
        """Load a wire-format graph. Node ids are renumbered densely in
        stored order; inputs must refer to ids that appear earlier."""
        if not isinstance(data, dict):
            raise GraphError(f"expected topology object, got {type(data).__name__}")
        raw_nodes = data.get("nodes")
        if not isinstance(raw_nodes, list) or not raw_nodes:
            raise GraphError("topology graph has no nodes")

        index: dict[str, int] = {}
        nodes: list[Node] = []
        for position, raw in enumerate(raw_nodes):
            if not isinstance(raw, dict) or "id" not in raw or "op" not in raw:
                raise GraphError(f"node at position {position} needs 'id' and 'op'")
            node_id = str(raw["id"])
            if node_id in index:
                raise GraphError(f"duplicate node id {node_id}")
            op = str(raw["op"])
            if op not in OPS:
                raise UnsupportedGraphOp(op)
            inputs = []
            for ref in raw.get("inputs") or []:
                if str(ref) not in index:
                    raise GraphError(f"missing input node: {ref}")
                inputs.append(index[str(ref)])
            params = raw.get("params") or {}
            if not isinstance(params, dict):
                raise GraphError(f"node {node_id} params must be an object")
            index[node_id] = position
            nodes.append(Node(position, op, tuple(inputs), dict(params)))

        root = str(data.get("root", ""))
        if root not in index:
            raise GraphError(f"root node {root!r} not found")

        sig = data.get("signature") or {}
        try:
            signature = Signature(
                betti_hint=tuple(int(v) for v in sig.get("betti_hint", (1, 0, 0))),
                euler_hint=int(sig.get("euler_hint", 1)),
                genus_hint=int(sig.get("genus_hint", 0)),
            )
            invariants = tuple(str(s) for s in data.get("invariants", DEFAULT_INVARIANTS))
        except (AttributeError, TypeError, ValueError) as e:
            raise GraphError(f"malformed signature or invariants: {e}") from e
        return cls(
            nodes=tuple(nodes),
            root=index[root],
            format=str(data.get("format", FORMAT)),
            invariants=invariants,
            signature=signature,
        )

    def to_json(self, indent=None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "TopologyGraph":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise GraphError(f"malformed topology JSON: {e}") from e
        return cls.from_dict(data)
