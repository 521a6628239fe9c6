from content_flow.graph.diagnostics import ValidationResult, render_rejection, render_rejections
from content_flow.graph.executor import (
    CancellationToken,
    ExecutionError,
    ExecutionSummary,
    NodeExecutionState,
    RunCancelledError,
    WorkflowExecutionResult,
    WorkflowExecutor,
)
from content_flow.graph.handlers import NodeExecutionError
from content_flow.graph.hooks import WORKFLOW_EVENTS, GraphHookRegistry, HookInvocation
from content_flow.graph.model import ConnectionIndex, ConnectionProposal, Edge, NodeInstance
from content_flow.graph.registry import (
    DEFAULT_REGISTRY,
    InputPort,
    NodeTypeDefinition,
    NodeTypeRegistry,
    OutputPort,
    get_default_input_handle,
    get_default_output_handle,
    get_node_type,
)
from content_flow.graph.transformer import is_compatible, transform
from content_flow.graph.validator import (
    WorkflowValidationError,
    validate_connection,
    validate_connection_proposal,
    validate_node_addition,
    validate_workflow,
    validate_workflow_or_raise,
)
from content_flow.graph.workflow import WorkflowGraph

__all__ = [
    "CancellationToken",
    "ConnectionIndex",
    "ConnectionProposal",
    "DEFAULT_REGISTRY",
    "Edge",
    "ExecutionError",
    "ExecutionSummary",
    "GraphHookRegistry",
    "HookInvocation",
    "InputPort",
    "NodeExecutionError",
    "NodeExecutionState",
    "NodeInstance",
    "NodeTypeDefinition",
    "NodeTypeRegistry",
    "OutputPort",
    "RunCancelledError",
    "ValidationResult",
    "WORKFLOW_EVENTS",
    "WorkflowExecutionResult",
    "WorkflowExecutor",
    "WorkflowGraph",
    "WorkflowValidationError",
    "get_default_input_handle",
    "get_default_output_handle",
    "get_node_type",
    "is_compatible",
    "render_rejection",
    "render_rejections",
    "transform",
    "validate_connection",
    "validate_connection_proposal",
    "validate_node_addition",
    "validate_workflow",
    "validate_workflow_or_raise",
]
