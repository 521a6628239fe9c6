from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from content_flow.graph.diagnostics import ValidationResult
from content_flow.graph.model import (
    ConnectionIndex,
    ConnectionProposal,
    Edge,
    NodeInstance,
    edge_from_dict,
    edge_to_dict,
    node_from_dict,
    node_to_dict,
)
from content_flow.graph.registry import DEFAULT_REGISTRY, NodeTypeRegistry
from content_flow.graph.validator import (
    validate_connection_proposal,
    validate_node_addition,
    validate_workflow,
)

if TYPE_CHECKING:
    from content_flow.graph.executor import WorkflowExecutionResult


LOGGER = logging.getLogger(__name__)

RejectionListener = Callable[[ValidationResult, ConnectionProposal], object]

# Node/edge changes that only matter to an editor surface.
_PASSIVE_CHANGES = {"select", "dimensions"}


class WorkflowGraph:
    """Editable workflow: nodes, edges and the derived connection index.

    Every mutation validates first and then commits nodes, edges and a freshly
    built index together. A rejected mutation leaves all three untouched.
    """

    def __init__(
        self,
        nodes: Iterable[NodeInstance] = (),
        edges: Iterable[Edge] = (),
        *,
        registry: NodeTypeRegistry | None = None,
    ) -> None:
        self._registry = registry or DEFAULT_REGISTRY
        self._nodes: dict[str, NodeInstance] = {node.id: node for node in nodes}
        self._edges: list[Edge] = list(edges)
        self._index = ConnectionIndex.build(self._nodes.values(), self._edges, registry=self._registry)
        self._rejection_listeners: list[RejectionListener] = []
        self._run_in_progress = False
        self._node_counter = len(self._nodes)
        self.last_rejection: ValidationResult | None = None

    @property
    def registry(self) -> NodeTypeRegistry:
        return self._registry

    @property
    def nodes(self) -> list[NodeInstance]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges)

    @property
    def index(self) -> ConnectionIndex:
        return self._index

    @property
    def run_in_progress(self) -> bool:
        return self._run_in_progress

    def node(self, node_id: str) -> NodeInstance | None:
        return self._nodes.get(node_id)

    def edge(self, edge_id: str) -> Edge | None:
        return next((edge for edge in self._edges if edge.id == edge_id), None)

    def add_rejection_listener(self, listener: RejectionListener) -> None:
        self._rejection_listeners.append(listener)

    def remove_rejection_listener(self, listener: RejectionListener) -> None:
        if listener in self._rejection_listeners:
            self._rejection_listeners.remove(listener)

    def add_node(
        self,
        type_id: str,
        *,
        node_id: str | None = None,
        data: Mapping[str, Any] | None = None,
        position: dict[str, float] | None = None,
    ) -> tuple[NodeInstance | None, ValidationResult]:
        blocked = self._run_guard()
        if blocked is not None:
            return None, blocked

        result = validate_node_addition(type_id, self._nodes.values(), registry=self._registry)
        if not result.ok:
            return None, result

        if node_id is None:
            node_id = self._next_node_id(type_id)
        elif node_id in self._nodes:
            return None, ValidationResult.reject(
                "DUPLICATE_NODE_ID",
                f"Node id '{node_id}' is already in use",
                node_id=node_id,
            )

        definition = self._registry.get_node_type(type_id)
        if definition is None:
            return None, ValidationResult.reject("UNKNOWN_NODE_TYPE", f"Unknown node type: {type_id}", node_id=node_id)
        node_data = definition.new_data()
        node_data.update(copy.deepcopy(dict(data or {})))
        node = NodeInstance(id=node_id, type=type_id, data=node_data, position=position)

        nodes = dict(self._nodes)
        nodes[node.id] = node
        self._commit(nodes, self._edges)
        return node, ValidationResult.accept()

    def connect(self, proposal: ConnectionProposal) -> tuple[Edge | None, ValidationResult]:
        blocked = self._run_guard()
        if blocked is not None:
            self._publish_rejection(blocked, proposal)
            return None, blocked

        result = validate_connection_proposal(proposal, self._nodes, self._index, registry=self._registry)
        if not result.ok:
            self._publish_rejection(result, proposal)
            return None, result

        source = self._nodes[proposal.source]
        target = self._nodes[proposal.target]
        output = self._registry.find_output(source.type, proposal.source_handle)
        input_port = self._registry.find_input(target.type, proposal.target_handle)
        if output is None or input_port is None:
            missing = ValidationResult.reject(
                "OUTPUT_NOT_FOUND" if output is None else "INPUT_NOT_FOUND",
                f"No matching port for connection {source.id} -> {target.id}",
                node_id=source.id if output is None else target.id,
            )
            self._publish_rejection(missing, proposal)
            return None, missing

        edge = Edge(
            id=f"edge-{source.id}-{output.id}-{target.id}-{input_port.id}",
            source=source.id,
            target=target.id,
            source_handle=output.id,
            target_handle=input_port.id,
            data={"sourceType": source.type, "targetType": target.type},
        )
        self._commit(self._nodes, [*self._edges, edge])
        self.last_rejection = None
        return edge, result

    def disconnect(self, edge_id: str) -> ValidationResult:
        blocked = self._run_guard()
        if blocked is not None:
            return blocked
        if self.edge(edge_id) is None:
            return ValidationResult.reject("EDGE_NOT_FOUND", f"Edge '{edge_id}' not found", edge_id=edge_id)

        self._commit(self._nodes, [edge for edge in self._edges if edge.id != edge_id])
        return ValidationResult.accept()

    def remove_node(self, node_id: str) -> ValidationResult:
        blocked = self._run_guard()
        if blocked is not None:
            return blocked
        if node_id not in self._nodes:
            return ValidationResult.reject("NODE_NOT_FOUND", f"Node '{node_id}' not found", node_id=node_id)

        nodes = {key: value for key, value in self._nodes.items() if key != node_id}
        edges = [edge for edge in self._edges if edge.source != node_id and edge.target != node_id]
        self._commit(nodes, edges)
        return ValidationResult.accept()

    def update_node_data(self, node_id: str, patch: Mapping[str, Any]) -> ValidationResult:
        blocked = self._run_guard()
        if blocked is not None:
            return blocked
        node = self._nodes.get(node_id)
        if node is None:
            return ValidationResult.reject("NODE_NOT_FOUND", f"Node '{node_id}' not found", node_id=node_id)

        node.data = {**node.data, **copy.deepcopy(dict(patch))}
        self._commit(self._nodes, self._edges)
        return ValidationResult.accept()

    def apply_node_change(self, change: Mapping[str, Any]) -> ValidationResult:
        """Apply one editor change: ``add``, ``remove``, ``position``, ``data`` or a passive one."""
        kind = str(change.get("type", ""))
        if kind in _PASSIVE_CHANGES:
            return ValidationResult.accept()

        if kind == "add":
            item = dict(change.get("item") or {})
            _, result = self.add_node(
                str(item.get("type", "")),
                node_id=item.get("id"),
                data=item.get("data"),
                position=item.get("position"),
            )
            return result

        node_id = str(change.get("id", ""))
        if kind == "remove":
            return self.remove_node(node_id)

        if kind == "position":
            blocked = self._run_guard()
            if blocked is not None:
                return blocked
            node = self._nodes.get(node_id)
            if node is None:
                return ValidationResult.reject("NODE_NOT_FOUND", f"Node '{node_id}' not found", node_id=node_id)
            position = change.get("position")
            if isinstance(position, Mapping):
                node.position = {"x": float(position.get("x", 0)), "y": float(position.get("y", 0))}
            return ValidationResult.accept()

        if kind == "data":
            return self.update_node_data(node_id, dict(change.get("data") or {}))

        return ValidationResult.reject("UNSUPPORTED_CHANGE", f"Unsupported node change '{kind}'", node_id=node_id or None)

    def apply_edge_change(self, change: Mapping[str, Any]) -> ValidationResult:
        kind = str(change.get("type", ""))
        if kind in _PASSIVE_CHANGES:
            return ValidationResult.accept()

        if kind == "add":
            item = dict(change.get("item") or {})
            proposal = ConnectionProposal(
                source=str(item.get("source", "")),
                target=str(item.get("target", "")),
                source_handle=item.get("sourceHandle"),
                target_handle=item.get("targetHandle"),
            )
            _, result = self.connect(proposal)
            return result

        if kind == "remove":
            return self.disconnect(str(change.get("id", "")))

        return ValidationResult.reject("UNSUPPORTED_CHANGE", f"Unsupported edge change '{kind}'")

    def apply_execution_results(self, result: WorkflowExecutionResult) -> list[str]:
        """Write a finished run's node data back into the graph; returns the updated node ids."""
        if self._run_in_progress:
            raise RuntimeError("Cannot apply execution results while a run is in progress.")

        updated: list[str] = []
        for node_id, data in result.node_data.items():
            node = self._nodes.get(node_id)
            if node is None or node.data == data:
                continue
            node.data = copy.deepcopy(data)
            updated.append(node_id)
        if updated:
            self._commit(self._nodes, self._edges)
        return updated

    def validate(self) -> list[ValidationResult]:
        return validate_workflow(self._nodes.values(), self._edges, registry=self._registry)

    def snapshot(self) -> tuple[list[NodeInstance], list[Edge]]:
        return copy.deepcopy(list(self._nodes.values())), copy.deepcopy(self._edges)

    def begin_run(self) -> None:
        if self._run_in_progress:
            raise RuntimeError("A workflow run is already in progress for this graph.")
        self._run_in_progress = True

    def end_run(self) -> None:
        self._run_in_progress = False

    @contextmanager
    def running(self) -> Iterator[WorkflowGraph]:
        self.begin_run()
        try:
            yield self
        finally:
            self.end_run()

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node_to_dict(node) for node in self._nodes.values()],
            "edges": [edge_to_dict(edge) for edge in self._edges],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, registry: NodeTypeRegistry | None = None) -> WorkflowGraph:
        nodes = [node_from_dict(item) for item in payload.get("nodes") or []]
        edges = [edge_from_dict(item) for item in payload.get("edges") or []]
        return cls(nodes, edges, registry=registry)

    def _run_guard(self) -> ValidationResult | None:
        if not self._run_in_progress:
            return None
        return ValidationResult.reject(
            "RUN_IN_PROGRESS",
            "The workflow cannot be edited while it is running",
            suggestion="Wait for the current run to finish",
        )

    def _commit(self, nodes: dict[str, NodeInstance], edges: list[Edge]) -> None:
        index = ConnectionIndex.build(nodes.values(), edges, registry=self._registry)
        self._nodes = nodes
        self._edges = edges
        self._index = index

    def _next_node_id(self, type_id: str) -> str:
        while True:
            self._node_counter += 1
            candidate = f"{type_id}-{self._node_counter}"
            if candidate not in self._nodes:
                return candidate

    def _publish_rejection(self, result: ValidationResult, proposal: ConnectionProposal) -> None:
        self.last_rejection = result
        LOGGER.debug("Connection %s -> %s rejected: %s", proposal.source, proposal.target, result.reason)
        for listener in list(self._rejection_listeners):
            try:
                listener(result, proposal)
            except Exception as exc:  # noqa: BLE001
                LOGGER.debug("Rejection listener failed: %s", exc)
