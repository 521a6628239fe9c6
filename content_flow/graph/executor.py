from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from content_flow.content_services import ContentServices, TemplateContentServices
from content_flow.graph.handlers import HandlerContext, HandlerResult, NodeHandler, handler_for
from content_flow.graph.hooks import (
    NODE_EXECUTION_COMPLETE,
    NODE_EXECUTION_ERROR,
    NODE_EXECUTION_START,
    WORKFLOW_EXECUTION_COMPLETE,
    WORKFLOW_EXECUTION_ERROR,
    WORKFLOW_EXECUTION_START,
    GraphHookRegistry,
)
from content_flow.graph.model import ConnectionIndex, Edge, NodeInstance
from content_flow.graph.registry import (
    ANY,
    CONDITIONAL_NODE,
    CONDITIONAL_OUTPUTS,
    DEFAULT_REGISTRY,
    TRIGGER_NODE,
    NodeTypeRegistry,
)
from content_flow.graph.transformer import adapt_payload
from content_flow.settings import ALLOWED_TRAVERSALS, AppSettings

if TYPE_CHECKING:
    from content_flow.graph.workflow import WorkflowGraph


LOGGER = logging.getLogger(__name__)

NodeStatus = Literal["pending", "running", "completed", "error"]
RunStatus = Literal["completed", "completed_with_errors", "failed", "cancelled"]

MAX_DEPTH_MESSAGE = "Maximum execution depth reached. Possible cycle in workflow."
NO_START_MESSAGE = "No start node found in workflow"
WORKFLOW_SCOPE = "workflow"


class RunCancelledError(RuntimeError):
    """Raised inside a run when its cancellation token fires."""


class CancellationToken:
    """Cooperative cancellation with an optional wall-clock deadline.

    The executor checks the token before every node and races each handler
    call against it, so a slow collaborator call is abandoned once the token
    fires.
    """

    def __init__(self, *, deadline_seconds: float | None = None) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._deadline = time.monotonic() + deadline_seconds if deadline_seconds and deadline_seconds > 0 else None
        self._waiters: list[asyncio.Event] = []

    def cancel(self, reason: str = "Run cancelled") -> None:
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason
        for event in list(self._waiters):
            event.set()

    @property
    def cancelled(self) -> bool:
        if not self._cancelled and self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("Run deadline exceeded")
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> None:
        if self.cancelled:
            raise RunCancelledError(self._reason or "Run cancelled")

    async def wait(self) -> None:
        if self.cancelled:
            return
        event = asyncio.Event()
        self._waiters.append(event)
        try:
            await event.wait()
        finally:
            self._waiters.remove(event)


@dataclass(slots=True)
class NodeExecutionState:
    status: NodeStatus = "pending"
    start_time: float | None = None
    end_time: float | None = None
    inputs: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "inputs": self.inputs,
            "outputs": self.outputs,
            "error": self.error,
        }


@dataclass(slots=True)
class ExecutionError:
    node_id: str
    message: str
    kind: Literal["node", "structural"] = "node"
    code: str | None = None

    def render(self) -> str:
        return f"{self.node_id}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"nodeId": self.node_id, "message": self.message, "kind": self.kind}
        if self.code:
            payload["code"] = self.code
        return payload


@dataclass(slots=True)
class ExecutionContext:
    node_data: dict[str, dict[str, Any]] = field(default_factory=dict)
    execution_state: dict[str, NodeExecutionState] = field(default_factory=dict)
    exec_path: list[str] = field(default_factory=list)
    visited: set[str] = field(default_factory=set)
    errors: list[ExecutionError] = field(default_factory=list)
    current_node_id: str | None = None


@dataclass(slots=True)
class ExecutionSummary:
    total_nodes: int
    nodes_executed: int
    nodes_succeeded: int
    nodes_failed: int
    execution_time_ms: float
    errors: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalNodes": self.total_nodes,
            "nodesExecuted": self.nodes_executed,
            "nodesSucceeded": self.nodes_succeeded,
            "nodesFailed": self.nodes_failed,
            "executionTime": self.execution_time_ms,
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class WorkflowExecutionResult:
    status: RunStatus
    node_data: dict[str, dict[str, Any]]
    execution_state: dict[str, NodeExecutionState]
    exec_path: list[str]
    errors: list[ExecutionError]
    total_nodes: int

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    def structural_errors(self) -> list[ExecutionError]:
        return [item for item in self.errors if item.kind == "structural"]

    def summary(self) -> ExecutionSummary:
        states = list(self.execution_state.values())
        starts = [state.start_time for state in states if state.start_time is not None]
        ends = [state.end_time for state in states if state.end_time is not None]
        elapsed = (max(ends) - min(starts)) * 1000.0 if starts and ends else 0.0
        return ExecutionSummary(
            total_nodes=self.total_nodes,
            nodes_executed=len(self.exec_path),
            nodes_succeeded=sum(1 for state in states if state.status == "completed"),
            nodes_failed=sum(1 for state in states if state.status == "error"),
            execution_time_ms=round(max(0.0, elapsed), 3),
            errors=[item.render() for item in self.errors],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "nodeData": self.node_data,
            "executionState": {node_id: state.to_dict() for node_id, state in self.execution_state.items()},
            "execPath": list(self.exec_path),
            "errors": [item.to_dict() for item in self.errors],
            "summary": self.summary().to_dict(),
        }


class WorkflowExecutor:
    """Runs a content workflow one node at a time.

    ``traversal="linear"`` follows a single path from the start node (first
    outgoing edge, or the matching branch of a conditional node).
    ``traversal="worklist"`` runs every node whose incoming edges have all
    resolved, which lets fan-out branches and fan-in joins execute; untaken
    conditional branches are pruned.
    """

    def __init__(
        self,
        *,
        services: ContentServices | None = None,
        registry: NodeTypeRegistry | None = None,
        hook_registry: GraphHookRegistry | None = None,
        max_execution_depth: int = 50,
        traversal: str = "linear",
        deadline_seconds: float | None = None,
    ) -> None:
        if traversal not in ALLOWED_TRAVERSALS:
            raise ValueError(f"Unsupported traversal '{traversal}'. Use linear or worklist.")
        self._services = services or TemplateContentServices()
        self._registry = registry or DEFAULT_REGISTRY
        self._hooks = hook_registry or GraphHookRegistry()
        self._max_depth = max(1, int(max_execution_depth))
        self._traversal = traversal
        self._deadline_seconds = deadline_seconds if deadline_seconds and deadline_seconds > 0 else None

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        *,
        services: ContentServices | None = None,
        hook_registry: GraphHookRegistry | None = None,
    ) -> WorkflowExecutor:
        return cls(
            services=services,
            hook_registry=hook_registry,
            max_execution_depth=settings.max_execution_depth,
            traversal=settings.traversal,
            deadline_seconds=settings.run_deadline_seconds,
        )

    @property
    def hooks(self) -> GraphHookRegistry:
        return self._hooks

    @property
    def traversal(self) -> str:
        return self._traversal

    async def execute_workflow(
        self,
        nodes: Iterable[NodeInstance],
        edges: Iterable[Edge],
        *,
        cancellation: CancellationToken | None = None,
    ) -> WorkflowExecutionResult:
        node_list = list(nodes)
        edge_list = list(edges)
        node_map = {node.id: node for node in node_list}
        index = ConnectionIndex.build(node_list, edge_list, registry=self._registry)
        token = cancellation
        if token is None and self._deadline_seconds is not None:
            token = CancellationToken(deadline_seconds=self._deadline_seconds)

        context = ExecutionContext()
        for node in node_list:
            context.node_data[node.id] = copy.deepcopy(node.data)
            context.execution_state[node.id] = NodeExecutionState()

        await self._emit_hook(
            WORKFLOW_EXECUTION_START,
            {"nodeCount": len(node_list), "edgeCount": len(edge_list), "traversal": self._traversal},
        )

        start = self._find_start_node(node_list, index)
        if start is None:
            context.errors.append(
                ExecutionError(node_id=WORKFLOW_SCOPE, message=NO_START_MESSAGE, kind="structural", code="NO_START_NODE")
            )
            LOGGER.warning(NO_START_MESSAGE)
            await self._emit_hook(WORKFLOW_EXECUTION_ERROR, {"error": NO_START_MESSAGE, "code": "NO_START_NODE"})
            return self._build_result("failed", context, len(node_list))

        cancelled = False
        try:
            if self._traversal == "worklist":
                await self._run_worklist(start, context, node_map, index, token)
            else:
                await self._run_linear(start, context, node_map, index, token)
        except RunCancelledError as exc:
            cancelled = True
            message = str(exc) or "Run cancelled"
            context.errors.append(
                ExecutionError(
                    node_id=context.current_node_id or WORKFLOW_SCOPE,
                    message=message,
                    kind="structural",
                    code="RUN_CANCELLED",
                )
            )
            LOGGER.warning("Workflow run cancelled at %s: %s", context.current_node_id, message)
            await self._emit_hook(WORKFLOW_EXECUTION_ERROR, {"error": message, "code": "RUN_CANCELLED"})

        if cancelled:
            status: RunStatus = "cancelled"
        elif context.errors:
            status = "completed_with_errors"
        else:
            status = "completed"

        result = self._build_result(status, context, len(node_list))
        summary = result.summary()
        LOGGER.info(
            "Workflow run finished: status=%s executed=%s succeeded=%s failed=%s",
            status,
            summary.nodes_executed,
            summary.nodes_succeeded,
            summary.nodes_failed,
        )
        await self._emit_hook(
            WORKFLOW_EXECUTION_COMPLETE,
            {
                "status": status,
                "execPath": list(result.exec_path),
                "nodeData": result.node_data,
                "summary": summary.to_dict(),
            },
        )
        return result

    async def execute_graph(
        self,
        graph: WorkflowGraph,
        *,
        cancellation: CancellationToken | None = None,
    ) -> WorkflowExecutionResult:
        """Run a snapshot of ``graph`` while holding its run-in-progress flag."""
        with graph.running():
            nodes, edges = graph.snapshot()
            return await self.execute_workflow(nodes, edges, cancellation=cancellation)

    def run(
        self,
        nodes: Iterable[NodeInstance],
        edges: Iterable[Edge],
        *,
        cancellation: CancellationToken | None = None,
    ) -> WorkflowExecutionResult:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            raise RuntimeError(
                "WorkflowExecutor.run() cannot be called inside an active event loop. Use await execute_workflow()."
            )
        return asyncio.run(self.execute_workflow(nodes, edges, cancellation=cancellation))

    async def _run_linear(
        self,
        start: str,
        context: ExecutionContext,
        node_map: dict[str, NodeInstance],
        index: ConnectionIndex,
        token: CancellationToken | None,
    ) -> None:
        current: str | None = start
        depth = 0
        while current is not None and current not in context.visited:
            if current not in node_map:
                self._record_unknown_target(context, current)
                return
            if depth >= self._max_depth:
                self._record_max_depth(context, current)
                return
            context.current_node_id = current
            if token is not None:
                token.check()

            await self._execute_node(current, context, node_map, index, token)
            current = self._next_node(current, context, node_map, index)
            depth += 1

        if current is not None:
            self._record_cycle(context, current)

    async def _run_worklist(
        self,
        start: str,
        context: ExecutionContext,
        node_map: dict[str, NodeInstance],
        index: ConnectionIndex,
        token: CancellationToken | None,
    ) -> None:
        edge_state: dict[int, bool] = {}
        queue: deque[str] = deque([start])
        queued = {start}
        pruned: set[str] = set()

        # Every other root seeds the queue too, so joins fed by separate roots can resolve.
        for node_id in node_map:
            if node_id not in queued and not index.incoming(node_id):
                queue.append(node_id)
                queued.add(node_id)

        steps = 0
        while queue:
            node_id = queue.popleft()
            if steps >= self._max_depth:
                self._record_max_depth(context, node_id)
                return
            context.current_node_id = node_id
            if token is not None:
                token.check()

            await self._execute_node(node_id, context, node_map, index, token, edge_state=edge_state)
            steps += 1

            taken = self._taken_edges(node_id, context, node_map, index)
            pending: deque[str] = deque()
            for edge in index.outgoing(node_id):
                edge_state[id(edge)] = id(edge) in taken
                if edge.target not in node_map:
                    self._record_unknown_target(context, edge.target)
                    continue
                if edge.target in context.visited:
                    self._record_cycle(context, edge.target)
                    continue
                pending.append(edge.target)

            while pending:
                target = pending.popleft()
                if target in context.visited or target in queued or target in pruned:
                    continue
                incoming = index.incoming(target)
                if any(id(edge) not in edge_state for edge in incoming):
                    continue
                live = [edge for edge in incoming if edge_state[id(edge)]]
                if live and self._required_inputs_met(target, live, incoming, context, node_map, index):
                    queue.append(target)
                    queued.add(target)
                    continue
                pruned.add(target)
                LOGGER.debug("Skipping node %s: no live upstream for its inputs", target)
                for edge in index.outgoing(target):
                    edge_state[id(edge)] = False
                    pending.append(edge.target)

        for node_id in node_map:
            if node_id in context.visited or node_id in pruned:
                continue
            incoming = index.incoming(node_id)
            if any(edge_state.get(id(edge)) for edge in incoming):
                self._record_cycle(context, node_id)

    async def _execute_node(
        self,
        node_id: str,
        context: ExecutionContext,
        node_map: dict[str, NodeInstance],
        index: ConnectionIndex,
        token: CancellationToken | None,
        *,
        edge_state: dict[int, bool] | None = None,
    ) -> None:
        node = node_map[node_id]
        state = context.execution_state[node_id]

        context.visited.add(node_id)
        context.exec_path.append(node_id)
        state.status = "running"
        state.start_time = time.time()
        await self._emit_hook(NODE_EXECUTION_START, {"nodeId": node_id, "nodeType": node.type})

        inputs = self._gather_inputs(node, context, node_map, index, edge_state)
        state.inputs = inputs
        handler_context = HandlerContext(
            node_id=node_id,
            node_type=node.type,
            data=copy.deepcopy(context.node_data[node_id]),
            inputs=inputs,
            services=self._services,
        )

        try:
            result = await self._invoke_handler(handler_for(node.type), handler_context, token)
        except RunCancelledError as exc:
            state.status = "error"
            state.end_time = time.time()
            state.error = str(exc) or "Run cancelled"
            raise
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or exc.__class__.__name__
            state.status = "error"
            state.end_time = time.time()
            state.error = message
            context.errors.append(ExecutionError(node_id=node_id, message=message))
            LOGGER.warning("Node %s (%s) failed: %s", node_id, node.type, message)
            await self._emit_hook(NODE_EXECUTION_ERROR, {"nodeId": node_id, "nodeType": node.type, "error": message})
            return

        context.node_data[node_id] = {**context.node_data[node_id], **result.data, "executionCompleted": True}
        state.status = "completed"
        state.end_time = time.time()
        state.outputs = copy.deepcopy(result.data)
        await self._emit_hook(
            NODE_EXECUTION_COMPLETE,
            {"nodeId": node_id, "nodeType": node.type, "result": {"status": result.status, "data": result.data}},
        )

    async def _invoke_handler(
        self,
        handler: NodeHandler,
        handler_context: HandlerContext,
        token: CancellationToken | None,
    ) -> HandlerResult:
        if token is None:
            return await handler(handler_context)

        token.check()
        handler_task = asyncio.ensure_future(handler(handler_context))
        cancel_task = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {handler_task, cancel_task},
                timeout=token.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_task.cancel()

        if handler_task in done:
            return handler_task.result()

        handler_task.cancel()
        await asyncio.gather(handler_task, return_exceptions=True)
        if not token.cancelled:
            token.cancel("Run deadline exceeded")
        raise RunCancelledError(token.reason or "Run cancelled")

    def _gather_inputs(
        self,
        node: NodeInstance,
        context: ExecutionContext,
        node_map: dict[str, NodeInstance],
        index: ConnectionIndex,
        edge_state: dict[int, bool] | None,
    ) -> dict[str, list[dict[str, Any]]]:
        inputs: dict[str, list[dict[str, Any]]] = {}
        for edge in index.incoming(node.id):
            source = node_map.get(edge.source)
            if source is None:
                continue
            if edge_state is not None and not edge_state.get(id(edge), False):
                continue

            handle = index.target_handle_of(edge)
            output = self._registry.find_output(source.type, index.source_handle_of(edge))
            input_port = self._registry.find_input(node.type, handle)
            data = copy.deepcopy(context.node_data.get(source.id, {}))
            transformed = adapt_payload(
                data,
                source_type=source.type,
                target_type=node.type,
                source_port_type=output.data_type if output is not None else ANY,
                target_port_type=input_port.data_type if input_port is not None else ANY,
                registry=self._registry,
            )
            inputs.setdefault(handle, []).append(
                {"nodeId": source.id, "nodeType": source.type, "data": data, "transformed": transformed}
            )
        return inputs

    def _find_start_node(self, nodes: list[NodeInstance], index: ConnectionIndex) -> str | None:
        trigger = next((node for node in nodes if node.type == TRIGGER_NODE), None)
        if trigger is not None:
            return trigger.id
        root = next((node for node in nodes if not index.incoming(node.id)), None)
        return root.id if root is not None else None

    def _branch_edges(self, node_id: str, index: ConnectionIndex) -> tuple[Edge | None, Edge | None]:
        outgoing = index.outgoing(node_id)
        true_edge = next((edge for edge in outgoing if index.source_handle_of(edge) == CONDITIONAL_OUTPUTS[0]), None)
        false_edge = next((edge for edge in outgoing if index.source_handle_of(edge) == CONDITIONAL_OUTPUTS[1]), None)
        return true_edge, false_edge

    def _next_node(
        self,
        node_id: str,
        context: ExecutionContext,
        node_map: dict[str, NodeInstance],
        index: ConnectionIndex,
    ) -> str | None:
        outgoing = index.outgoing(node_id)
        if not outgoing:
            return None

        if node_map[node_id].type == CONDITIONAL_NODE:
            true_edge, false_edge = self._branch_edges(node_id, index)
            if true_edge is None or false_edge is None:
                return outgoing[0].target
            return true_edge.target if context.node_data[node_id].get("result") else false_edge.target

        return outgoing[0].target

    def _taken_edges(
        self,
        node_id: str,
        context: ExecutionContext,
        node_map: dict[str, NodeInstance],
        index: ConnectionIndex,
    ) -> set[int]:
        outgoing = index.outgoing(node_id)
        if node_map[node_id].type != CONDITIONAL_NODE:
            return {id(edge) for edge in outgoing}

        true_edge, false_edge = self._branch_edges(node_id, index)
        if true_edge is None or false_edge is None:
            return {id(edge) for edge in outgoing}
        branch = CONDITIONAL_OUTPUTS[0] if context.node_data[node_id].get("result") else CONDITIONAL_OUTPUTS[1]
        return {id(edge) for edge in outgoing if index.source_handle_of(edge) == branch}

    def _required_inputs_met(
        self,
        node_id: str,
        live: list[Edge],
        incoming: list[Edge],
        context: ExecutionContext,
        node_map: dict[str, NodeInstance],
        index: ConnectionIndex,
    ) -> bool:
        node_type = node_map[node_id].type
        definition = self._registry.get_node_type(node_type)
        if definition is None:
            return True

        for port in definition.inputs:
            if not port.required:
                continue
            wired = [edge for edge in incoming if self._port_id(node_type, edge, index) == port.id]
            if not wired:
                continue
            feeding = [edge for edge in live if self._port_id(node_type, edge, index) == port.id]
            if not any(context.execution_state[edge.source].status == "completed" for edge in feeding):
                return False
        return True

    def _port_id(self, node_type: str, edge: Edge, index: ConnectionIndex) -> str | None:
        port = self._registry.find_input(node_type, index.target_handle_of(edge))
        return port.id if port is not None else None

    def _record_cycle(self, context: ExecutionContext, node_id: str) -> None:
        message = f"Node '{node_id}' was reached again; stopping to avoid a cycle"
        if any(item.code == "CYCLE_DETECTED" and item.node_id == node_id for item in context.errors):
            return
        context.errors.append(ExecutionError(node_id=node_id, message=message, kind="structural", code="CYCLE_DETECTED"))
        LOGGER.warning(message)

    def _record_unknown_target(self, context: ExecutionContext, node_id: str) -> None:
        message = f"Edge points to unknown node '{node_id}'"
        context.errors.append(ExecutionError(node_id=node_id, message=message, kind="structural", code="UNKNOWN_NODE"))
        LOGGER.warning(message)

    def _record_max_depth(self, context: ExecutionContext, node_id: str) -> None:
        context.errors.append(
            ExecutionError(node_id=node_id, message=MAX_DEPTH_MESSAGE, kind="structural", code="MAX_DEPTH_REACHED")
        )
        LOGGER.warning(MAX_DEPTH_MESSAGE)

    def _build_result(self, status: RunStatus, context: ExecutionContext, total_nodes: int) -> WorkflowExecutionResult:
        return WorkflowExecutionResult(
            status=status,
            node_data=copy.deepcopy(context.node_data),
            execution_state=context.execution_state,
            exec_path=list(context.exec_path),
            errors=list(context.errors),
            total_nodes=total_nodes,
        )

    async def _emit_hook(self, event: str, payload: dict[str, Any]) -> None:
        try:
            await self._hooks.emit(event, payload)
        except Exception:  # noqa: BLE001
            # Listeners never affect a run.
            return
