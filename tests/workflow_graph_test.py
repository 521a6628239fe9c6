from __future__ import annotations

import unittest
from unittest.mock import patch

from content_flow.graph import ConnectionProposal, ValidationResult, WorkflowGraph


def _graph_with(*type_ids: str) -> WorkflowGraph:
    graph = WorkflowGraph()
    for type_id in type_ids:
        _, result = graph.add_node(type_id)
        assert result.ok, result.reason
    return graph


class WorkflowGraphEditTests(unittest.TestCase):
    def test_add_node_seeds_initial_data_and_ids(self) -> None:
        graph = WorkflowGraph()
        node, result = graph.add_node("ideaNode", data={"topic": "kayaks"}, position={"x": 10, "y": 20})
        self.assertTrue(result.ok)
        assert node is not None
        self.assertEqual(node.id, "ideaNode-1")
        self.assertEqual(node.data["topic"], "kayaks")
        self.assertEqual(node.data["ideas"], [])
        self.assertFalse(node.data["hasGenerated"])
        self.assertIn("ideaNode-1", graph.index)

    def test_add_node_enforces_instance_cap(self) -> None:
        graph = _graph_with("triggerNode")
        node, result = graph.add_node("triggerNode")
        self.assertIsNone(node)
        self.assertEqual(result.code, "MAX_INSTANCES_REACHED")
        self.assertEqual(result.reason, "Maximum of 1 'Workflow Trigger' node(s) allowed")
        self.assertEqual(len(graph.nodes), 1)

    def test_add_node_rejects_duplicate_id(self) -> None:
        graph = WorkflowGraph()
        graph.add_node("ideaNode", node_id="idea")
        node, result = graph.add_node("draftNode", node_id="idea")
        self.assertIsNone(node)
        self.assertEqual(result.code, "DUPLICATE_NODE_ID")

    def test_connect_resolves_default_handles(self) -> None:
        graph = _graph_with("ideaNode", "draftNode")
        edge, result = graph.connect(ConnectionProposal(source="ideaNode-1", target="draftNode-2"))
        self.assertTrue(result.ok)
        assert edge is not None
        self.assertEqual(edge.id, "edge-ideaNode-1-idea-draftNode-2-idea")
        self.assertEqual((edge.source_handle, edge.target_handle), ("idea", "idea"))
        self.assertEqual(edge.data, {"sourceType": "ideaNode", "targetType": "draftNode"})
        self.assertEqual(graph.index.to_dict()["draftNode-2"]["inputs"]["idea"], ["ideaNode-1"])

    def test_single_input_cardinality(self) -> None:
        graph = _graph_with("ideaNode", "ideaNode", "draftNode")
        graph.connect(ConnectionProposal(source="ideaNode-1", target="draftNode-3", target_handle="idea"))

        edge, result = graph.connect(ConnectionProposal(source="ideaNode-2", target="draftNode-3", target_handle="idea"))
        self.assertIsNone(edge)
        self.assertEqual(result.code, "INPUT_ALREADY_CONNECTED")
        self.assertIn("already has a connection", result.reason or "")
        self.assertIn("ideaNode-1", result.suggestion or "")
        self.assertEqual(len(graph.edges), 1)

    def test_multi_input_accepts_several_sources(self) -> None:
        graph = _graph_with("draftNode", "mediaNode", "mediaNode", "platformNode")
        for source in ("mediaNode-2", "mediaNode-3"):
            graph.connect(ConnectionProposal(source="draftNode-1", target=source))
            _, result = graph.connect(ConnectionProposal(source=source, target="platformNode-4", target_handle="media"))
            self.assertTrue(result.ok, result.reason)
        self.assertEqual(len(graph.index.inputs_on("platformNode-4", "media")), 2)

    def test_duplicate_connection_is_rejected(self) -> None:
        graph = _graph_with("draftNode", "hashtagNode")
        proposal = ConnectionProposal(source="draftNode-1", target="hashtagNode-2")
        graph.connect(proposal)
        _, result = graph.connect(proposal)
        self.assertEqual(result.code, "DUPLICATE_CONNECTION")

    def test_rejections_reach_listeners_and_last_rejection(self) -> None:
        graph = _graph_with("draftNode", "hashtagNode")
        seen: list[tuple[ValidationResult, ConnectionProposal]] = []

        def broken_listener(result: ValidationResult, proposal: ConnectionProposal) -> None:
            raise RuntimeError("listener failure")

        graph.add_rejection_listener(broken_listener)
        graph.add_rejection_listener(lambda result, proposal: seen.append((result, proposal)))

        _, result = graph.connect(ConnectionProposal(source="hashtagNode-2", target="draftNode-1"))
        self.assertEqual(result.code, "TARGET_TYPE_NOT_ALLOWED")
        self.assertIs(graph.last_rejection, result)
        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0][1].source, "hashtagNode-2")

        graph.connect(ConnectionProposal(source="draftNode-1", target="hashtagNode-2"))
        self.assertIsNone(graph.last_rejection)

    def test_missing_endpoint_and_node(self) -> None:
        graph = _graph_with("draftNode")
        _, missing = graph.connect(ConnectionProposal(source="", target="draftNode-1"))
        self.assertEqual(missing.code, "MISSING_ENDPOINT")
        _, ghost = graph.connect(ConnectionProposal(source="draftNode-1", target="ghost"))
        self.assertEqual(ghost.code, "NODE_NOT_FOUND")
        self.assertEqual(ghost.node_id, "ghost")

    def test_unresolved_port_after_validation_is_rejected(self) -> None:
        graph = _graph_with("ideaNode", "draftNode")
        proposal = ConnectionProposal(
            source="ideaNode-1", target="draftNode-2", source_handle="idea", target_handle="bogus"
        )

        with patch("content_flow.graph.validator.validate_connection", return_value=ValidationResult.accept()):
            edge, result = graph.connect(proposal)
        self.assertIsNone(edge)
        self.assertEqual(result.code, "INPUT_NOT_FOUND")
        self.assertEqual(result.node_id, "draftNode-2")

        with patch("content_flow.graph.workflow.validate_connection_proposal", return_value=ValidationResult.accept()):
            edge, result = graph.connect(proposal)
        self.assertIsNone(edge)
        self.assertEqual(result.code, "INPUT_NOT_FOUND")
        self.assertIs(graph.last_rejection, result)
        self.assertEqual(graph.edges, [])

    def test_unknown_type_is_rejected_even_past_addition_checks(self) -> None:
        graph = WorkflowGraph()
        with patch("content_flow.graph.workflow.validate_node_addition", return_value=ValidationResult.accept()):
            node, result = graph.add_node("mysteryNode")
        self.assertIsNone(node)
        self.assertEqual(result.code, "UNKNOWN_NODE_TYPE")
        self.assertEqual(graph.nodes, [])

    def test_remove_node_drops_its_edges(self) -> None:
        graph = _graph_with("ideaNode", "draftNode", "hashtagNode")
        graph.connect(ConnectionProposal(source="ideaNode-1", target="draftNode-2"))
        graph.connect(ConnectionProposal(source="draftNode-2", target="hashtagNode-3"))

        self.assertTrue(graph.remove_node("draftNode-2").ok)
        self.assertEqual(graph.edges, [])
        self.assertEqual(graph.index.outgoing("ideaNode-1"), [])
        self.assertEqual(graph.remove_node("draftNode-2").code, "NODE_NOT_FOUND")

    def test_disconnect(self) -> None:
        graph = _graph_with("draftNode", "hashtagNode")
        edge, _ = graph.connect(ConnectionProposal(source="draftNode-1", target="hashtagNode-2"))
        assert edge is not None
        self.assertTrue(graph.disconnect(edge.id).ok)
        self.assertEqual(graph.disconnect(edge.id).code, "EDGE_NOT_FOUND")

    def test_editor_changes(self) -> None:
        graph = WorkflowGraph()
        added = graph.apply_node_change({"type": "add", "item": {"id": "idea", "type": "ideaNode"}})
        self.assertTrue(added.ok)
        graph.apply_node_change({"type": "add", "item": {"id": "draft", "type": "draftNode"}})

        self.assertTrue(graph.apply_node_change({"type": "position", "id": "idea", "position": {"x": 5, "y": 7}}).ok)
        self.assertEqual(graph.node("idea").position, {"x": 5.0, "y": 7.0})  # type: ignore[union-attr]

        self.assertTrue(graph.apply_node_change({"type": "data", "id": "idea", "data": {"topic": "rivers"}}).ok)
        self.assertEqual(graph.node("idea").data["topic"], "rivers")  # type: ignore[union-attr]

        self.assertTrue(graph.apply_node_change({"type": "select", "id": "idea"}).ok)
        self.assertEqual(graph.apply_node_change({"type": "resize", "id": "idea"}).code, "UNSUPPORTED_CHANGE")

        connected = graph.apply_edge_change({"type": "add", "item": {"source": "idea", "target": "draft"}})
        self.assertTrue(connected.ok)
        self.assertEqual(len(graph.edges), 1)
        self.assertTrue(graph.apply_edge_change({"type": "remove", "id": graph.edges[0].id}).ok)
        self.assertEqual(graph.edges, [])

    def test_edits_are_blocked_while_running(self) -> None:
        graph = _graph_with("draftNode", "hashtagNode")
        with graph.running():
            self.assertTrue(graph.run_in_progress)
            _, result = graph.connect(ConnectionProposal(source="draftNode-1", target="hashtagNode-2"))
            self.assertEqual(result.code, "RUN_IN_PROGRESS")
            _, added = graph.add_node("ideaNode")
            self.assertEqual(added.code, "RUN_IN_PROGRESS")
            self.assertEqual(graph.remove_node("draftNode-1").code, "RUN_IN_PROGRESS")
            with self.assertRaises(RuntimeError):
                graph.begin_run()
        self.assertFalse(graph.run_in_progress)
        self.assertEqual(graph.edges, [])

    def test_dict_round_trip_and_validate(self) -> None:
        graph = _graph_with("ideaNode", "draftNode")
        graph.connect(ConnectionProposal(source="ideaNode-1", target="draftNode-2"))
        payload = graph.to_dict()
        self.assertEqual(payload["edges"][0]["sourceHandle"], "idea")

        restored = WorkflowGraph.from_dict(payload)
        self.assertEqual([node.id for node in restored.nodes], ["ideaNode-1", "draftNode-2"])
        self.assertEqual(restored.validate(), [])

    def test_snapshot_is_detached(self) -> None:
        graph = _graph_with("ideaNode")
        nodes, _ = graph.snapshot()
        nodes[0].data["topic"] = "changed"
        self.assertEqual(graph.node("ideaNode-1").data["topic"], "")  # type: ignore[union-attr]


if __name__ == "__main__":
    unittest.main()
