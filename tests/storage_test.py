from __future__ import annotations

import json
import os
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest
from unittest.mock import patch

from content_flow.graph import Edge, NodeInstance, WorkflowValidationError
from content_flow.graph.document import (
    WorkflowDocument,
    load_workflow_file,
    parse_workflow_document,
    save_workflow_file,
)
from content_flow.settings import load_settings
from content_flow.workflow_store import SavedWorkflowStore


def _document(name: str = "Kayak launch") -> WorkflowDocument:
    nodes = [
        NodeInstance(id="idea-1", type="ideaNode", data={"topic": "kayaks"}, position={"x": 0.0, "y": 0.0}),
        NodeInstance(id="draft-1", type="draftNode", data={}),
    ]
    edges = [Edge(id="e1", source="idea-1", target="draft-1", source_handle="idea", target_handle="idea")]
    return WorkflowDocument.from_parts(name, nodes, edges)


class WorkflowDocumentTests(unittest.TestCase):
    def test_payload_uses_camel_case_keys(self) -> None:
        payload = _document().to_payload()
        self.assertEqual(sorted(payload), ["createdAt", "edges", "name", "nodes"])
        self.assertEqual(payload["edges"][0]["sourceHandle"], "idea")
        self.assertEqual(payload["edges"][0]["targetHandle"], "idea")

    def test_parse_converts_back_to_graph_parts(self) -> None:
        document = parse_workflow_document(
            {
                "name": "wire",
                "nodes": [{"id": "a", "type": "draftNode", "data": {"draft": "x"}, "selected": True}],
                "edges": [{"id": "e", "source": "a", "target": "b", "sourceHandle": "draft"}],
            }
        )
        nodes = document.to_nodes()
        edges = document.to_edges()
        self.assertEqual(nodes[0].data, {"draft": "x"})
        self.assertEqual(edges[0].source_handle, "draft")
        self.assertIsNone(edges[0].target_handle)

    def test_parse_rejects_malformed_documents(self) -> None:
        with self.assertRaises(WorkflowValidationError):
            parse_workflow_document({"nodes": [{"type": "draftNode"}]})

    def test_file_helpers(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            path = save_workflow_file(_document(), Path(tmp_dir) / "out" / "flow.json")
            loaded = load_workflow_file(path)
            self.assertEqual(loaded.name, "Kayak launch")
            self.assertEqual(len(loaded.nodes), 2)

            unnamed = Path(tmp_dir) / "morning.json"
            unnamed.write_text(json.dumps({"nodes": [], "edges": []}), encoding="utf-8")
            self.assertEqual(load_workflow_file(unnamed).name, "morning")

            broken = Path(tmp_dir) / "broken.json"
            broken.write_text("{not json", encoding="utf-8")
            with self.assertRaises(WorkflowValidationError):
                load_workflow_file(broken)


class SavedWorkflowStoreTests(unittest.TestCase):
    def test_save_load_list_delete(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            store = SavedWorkflowStore(db_path=Path(tmp_dir) / "nested" / "workflows.db")

            record = store.save(_document())
            self.assertEqual((record.name, record.node_count, record.edge_count), ("Kayak launch", 2, 1))

            loaded = store.load("Kayak launch")
            assert loaded is not None
            self.assertEqual([node.id for node in loaded.to_nodes()], ["idea-1", "draft-1"])
            self.assertEqual(loaded.to_edges()[0].target_handle, "idea")
            self.assertIsNone(store.load("missing"))

            store.save(_document("Second"))
            self.assertEqual(sorted(item.name for item in store.list()), ["Kayak launch", "Second"])

            self.assertTrue(store.delete("Second"))
            self.assertFalse(store.delete("Second"))
            self.assertEqual([item.name for item in store.list()], ["Kayak launch"])

    def test_saving_same_name_replaces(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            store = SavedWorkflowStore(db_path=Path(tmp_dir) / "workflows.db")
            store.save(_document())

            replacement = WorkflowDocument.from_parts("Kayak launch", [NodeInstance(id="solo", type="ideaNode")], [])
            record = store.save(replacement)

            self.assertEqual(record.node_count, 1)
            self.assertEqual(len(store.list()), 1)
            loaded = store.load("Kayak launch")
            assert loaded is not None
            self.assertEqual([node.id for node in loaded.nodes], ["solo"])

    def test_blank_name_is_rejected(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            store = SavedWorkflowStore(db_path=Path(tmp_dir) / "workflows.db")
            with self.assertRaises(ValueError):
                store.save(_document("   "))


class SettingsTests(unittest.TestCase):
    def test_environment_overrides_and_fallbacks(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            env = {
                "CONTENT_FLOW_MAX_EXECUTION_DEPTH": "12",
                "CONTENT_FLOW_TRAVERSAL": "WORKLIST",
                "CONTENT_FLOW_RUN_DEADLINE_SECONDS": "not-a-number",
                "CONTENT_FLOW_WORKFLOW_DB": str(Path(tmp_dir) / "db" / "flows.db"),
            }
            with patch.dict(os.environ, env):
                settings = load_settings()

            self.assertEqual(settings.max_execution_depth, 12)
            self.assertEqual(settings.traversal, "worklist")
            self.assertEqual(settings.run_deadline_seconds, 0.0)
            self.assertTrue(settings.workflow_db_path.parent.exists())

    def test_unknown_traversal_falls_back_to_linear(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            env = {
                "CONTENT_FLOW_TRAVERSAL": "parallel",
                "CONTENT_FLOW_WORKFLOW_DB": str(Path(tmp_dir) / "flows.db"),
            }
            with patch.dict(os.environ, env):
                self.assertEqual(load_settings().traversal, "linear")


if __name__ == "__main__":
    unittest.main()
