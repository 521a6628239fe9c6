from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from content_flow.graph.model import Edge, NodeInstance
from content_flow.graph.validator import WorkflowValidationError


class NodeDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    position: dict[str, float] | None = None

    @classmethod
    def from_node(cls, node: NodeInstance) -> NodeDocument:
        return cls(id=node.id, type=node.type, data=node.data, position=node.position)

    def to_node(self) -> NodeInstance:
        return NodeInstance(id=self.id, type=self.type, data=dict(self.data), position=self.position)


class EdgeDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    source: str
    target: str
    source_handle: str | None = Field(default=None, alias="sourceHandle")
    target_handle: str | None = Field(default=None, alias="targetHandle")
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_edge(cls, edge: Edge) -> EdgeDocument:
        return cls(
            id=edge.id,
            source=edge.source,
            target=edge.target,
            source_handle=edge.source_handle,
            target_handle=edge.target_handle,
            data=edge.data,
        )

    def to_edge(self) -> Edge:
        return Edge(
            id=self.id,
            source=self.source,
            target=self.target,
            source_handle=self.source_handle,
            target_handle=self.target_handle,
            data=dict(self.data),
        )


class WorkflowDocument(BaseModel):
    """A named workflow as stored on disk: ``{name, nodes, edges, createdAt}``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = "untitled"
    nodes: list[NodeDocument] = Field(default_factory=list)
    edges: list[EdgeDocument] = Field(default_factory=list)
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        alias="createdAt",
    )

    @classmethod
    def from_parts(cls, name: str, nodes: list[NodeInstance], edges: list[Edge]) -> WorkflowDocument:
        return cls(
            name=name,
            nodes=[NodeDocument.from_node(node) for node in nodes],
            edges=[EdgeDocument.from_edge(edge) for edge in edges],
        )

    def to_nodes(self) -> list[NodeInstance]:
        return [item.to_node() for item in self.nodes]

    def to_edges(self) -> list[Edge]:
        return [item.to_edge() for item in self.edges]

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def parse_workflow_document(payload: object) -> WorkflowDocument:
    try:
        return WorkflowDocument.model_validate(payload)
    except ValidationError as exc:
        raise WorkflowValidationError(f"Invalid workflow document:\n{exc}") from exc


def load_workflow_file(path: Path) -> WorkflowDocument:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise WorkflowValidationError(f"Workflow file '{path}' is not valid JSON: {exc}") from exc

    document = parse_workflow_document(payload)
    if isinstance(payload, dict) and "name" not in payload:
        document.name = path.stem
    return document


def save_workflow_file(document: WorkflowDocument, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document.to_payload(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path
