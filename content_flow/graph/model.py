from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from content_flow.graph.registry import DEFAULT_REGISTRY, NodeTypeRegistry


@dataclass(slots=True)
class NodeInstance:
    id: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    position: dict[str, float] | None = None


@dataclass(slots=True)
class Edge:
    id: str
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ConnectionProposal:
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None


@dataclass(slots=True)
class NodeConnections:
    inputs: dict[str, list[Edge]] = field(default_factory=dict)
    outputs: dict[str, list[Edge]] = field(default_factory=dict)


class ConnectionIndex:
    """Derived adjacency view of a workflow, keyed by node id and handle.

    The index is never authoritative: it is rebuilt from ``(nodes, edges)``
    and resolves omitted edge handles through the registry defaults so that
    every edge lands on a concrete handle.
    """

    def __init__(self) -> None:
        self._connections: dict[str, NodeConnections] = {}
        self._incoming: dict[str, list[Edge]] = {}
        self._outgoing: dict[str, list[Edge]] = {}
        self._handles: dict[int, tuple[str, str]] = {}

    @classmethod
    def build(
        cls,
        nodes: Iterable[NodeInstance],
        edges: Iterable[Edge],
        registry: NodeTypeRegistry | None = None,
    ) -> ConnectionIndex:
        active_registry = registry or DEFAULT_REGISTRY
        index = cls()
        node_types: dict[str, str] = {}

        for node in nodes:
            node_types[node.id] = node.type
            entry = NodeConnections()
            definition = active_registry.get_node_type(node.type)
            if definition is not None:
                for port in definition.inputs:
                    entry.inputs[port.id] = []
                for port in definition.outputs:
                    entry.outputs[port.id] = []
            index._connections[node.id] = entry
            index._incoming[node.id] = []
            index._outgoing[node.id] = []

        for edge in edges:
            source_type = node_types.get(edge.source)
            target_type = node_types.get(edge.target)
            source_handle = edge.source_handle or active_registry.default_output_handle(source_type)
            target_handle = edge.target_handle or active_registry.default_input_handle(target_type)
            index._handles[id(edge)] = (source_handle, target_handle)

            if source_type is not None:
                index._connections[edge.source].outputs.setdefault(source_handle, []).append(edge)
                index._outgoing[edge.source].append(edge)
            if target_type is not None:
                index._connections[edge.target].inputs.setdefault(target_handle, []).append(edge)
                index._incoming[edge.target].append(edge)

        return index

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._connections

    def connections(self, node_id: str) -> NodeConnections:
        return self._connections.get(node_id) or NodeConnections()

    def incoming(self, node_id: str) -> list[Edge]:
        return list(self._incoming.get(node_id, []))

    def outgoing(self, node_id: str) -> list[Edge]:
        return list(self._outgoing.get(node_id, []))

    def inputs_on(self, node_id: str, handle: str) -> list[Edge]:
        return list(self.connections(node_id).inputs.get(handle, []))

    def outputs_on(self, node_id: str, handle: str) -> list[Edge]:
        return list(self.connections(node_id).outputs.get(handle, []))

    def source_handle_of(self, edge: Edge) -> str:
        resolved = self._handles.get(id(edge))
        if resolved is not None:
            return resolved[0]
        return edge.source_handle or "output"

    def target_handle_of(self, edge: Edge) -> str:
        resolved = self._handles.get(id(edge))
        if resolved is not None:
            return resolved[1]
        return edge.target_handle or "input"

    def to_dict(self) -> dict[str, dict[str, dict[str, list[str]]]]:
        return {
            node_id: {
                "inputs": {handle: [edge.source for edge in edges] for handle, edges in entry.inputs.items()},
                "outputs": {handle: [edge.target for edge in edges] for handle, edges in entry.outputs.items()},
            }
            for node_id, entry in self._connections.items()
        }


def node_from_dict(payload: dict[str, Any]) -> NodeInstance:
    position = payload.get("position")
    return NodeInstance(
        id=str(payload["id"]),
        type=str(payload["type"]),
        data=dict(payload.get("data") or {}),
        position=dict(position) if isinstance(position, dict) else None,
    )


def node_to_dict(node: NodeInstance) -> dict[str, Any]:
    payload: dict[str, Any] = {"id": node.id, "type": node.type, "data": node.data}
    if node.position is not None:
        payload["position"] = node.position
    return payload


def edge_from_dict(payload: dict[str, Any]) -> Edge:
    return Edge(
        id=str(payload["id"]),
        source=str(payload["source"]),
        target=str(payload["target"]),
        source_handle=payload.get("sourceHandle"),
        target_handle=payload.get("targetHandle"),
        data=dict(payload.get("data") or {}),
    )


def edge_to_dict(edge: Edge) -> dict[str, Any]:
    return {
        "id": edge.id,
        "source": edge.source,
        "target": edge.target,
        "sourceHandle": edge.source_handle,
        "targetHandle": edge.target_handle,
        "data": edge.data,
    }
