from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping

from content_flow.graph.diagnostics import ValidationResult, render_rejections
from content_flow.graph.model import ConnectionIndex, ConnectionProposal, Edge, NodeInstance
from content_flow.graph.registry import (
    CONDITIONAL_INPUT,
    CONDITIONAL_NODE,
    CONDITIONAL_OUTPUTS,
    DEFAULT_REGISTRY,
    InputPort,
    NodeTypeRegistry,
    OutputPort,
    PortRef,
    data_types_match,
)


class WorkflowValidationError(ValueError):
    """Raised when a whole workflow definition fails validation."""


def validate_connection(
    source_type: str,
    source_handle: str | None,
    target_type: str,
    target_handle: str | None,
    *,
    registry: NodeTypeRegistry | None = None,
) -> ValidationResult:
    active = registry or DEFAULT_REGISTRY

    source_def = active.get_node_type(source_type)
    if source_def is None:
        return ValidationResult.reject(
            "UNKNOWN_NODE_TYPE",
            f"Unknown source node type: {source_type}",
            suggestion=_known_types(active),
        )
    target_def = active.get_node_type(target_type)
    if target_def is None:
        return ValidationResult.reject(
            "UNKNOWN_NODE_TYPE",
            f"Unknown target node type: {target_type}",
            suggestion=_known_types(active),
        )

    output = active.find_output(source_type, source_handle)
    if output is None:
        available = ", ".join(port.id for port in source_def.outputs)
        return ValidationResult.reject(
            "OUTPUT_NOT_FOUND",
            f"Output '{source_handle}' not found on {source_def.title} node",
            suggestion=f"Available outputs are: {available}" if available else f"{source_def.title} has no outputs",
        )

    input_port = active.find_input(target_type, target_handle)
    if input_port is None:
        available = ", ".join(port.id for port in target_def.inputs)
        return ValidationResult.reject(
            "INPUT_NOT_FOUND",
            f"Input '{target_handle}' not found on {target_def.title} node",
            suggestion=f"Available inputs are: {available}" if available else f"{target_def.title} has no inputs",
        )

    if target_type not in output.valid_target_types:
        return ValidationResult.reject(
            "TARGET_TYPE_NOT_ALLOWED",
            f"{source_def.title} cannot connect to {target_def.title}",
            suggestion=_targets_suggestion(active, source_type, output),
        )

    if source_type not in input_port.valid_source_types:
        return ValidationResult.reject(
            "SOURCE_TYPE_NOT_ALLOWED",
            f"{target_def.title} cannot receive input from {source_def.title}",
            suggestion=_sources_suggestion(active, target_type, input_port),
        )

    # Branch ports carry whatever flows through them.
    if target_type == CONDITIONAL_NODE and input_port.id == CONDITIONAL_INPUT:
        return ValidationResult.accept()
    if source_type == CONDITIONAL_NODE and output.id in CONDITIONAL_OUTPUTS:
        return ValidationResult.accept()

    if not data_types_match(output.data_type, input_port.data_type):
        return ValidationResult.reject(
            "DATA_TYPE_MISMATCH",
            f"Data type mismatch: '{output.data_type}' cannot connect to '{input_port.data_type}'",
            suggestion=_targets_suggestion(active, source_type, output),
        )

    return ValidationResult.accept()


def validate_node_addition(
    type_id: str,
    existing_nodes: Iterable[NodeInstance],
    *,
    registry: NodeTypeRegistry | None = None,
) -> ValidationResult:
    active = registry or DEFAULT_REGISTRY
    definition = active.get_node_type(type_id)
    if definition is None:
        return ValidationResult.reject(
            "UNKNOWN_NODE_TYPE",
            f"Unknown node type: '{type_id}'",
            suggestion=_known_types(active),
        )

    if definition.max_instances is not None:
        instances = [node.id for node in existing_nodes if node.type == type_id]
        if len(instances) >= definition.max_instances:
            return ValidationResult.reject(
                "MAX_INSTANCES_REACHED",
                f"Maximum of {definition.max_instances} '{definition.title}' node(s) allowed",
                suggestion=f"Remove the existing instance(s) first: {', '.join(instances)}",
            )

    return ValidationResult.accept()


def validate_connection_proposal(
    proposal: ConnectionProposal,
    nodes: Mapping[str, NodeInstance],
    index: ConnectionIndex,
    *,
    registry: NodeTypeRegistry | None = None,
) -> ValidationResult:
    active = registry or DEFAULT_REGISTRY

    if not proposal.source or not proposal.target:
        return ValidationResult.reject("MISSING_ENDPOINT", "Missing source or target in connection")

    source_node = nodes.get(proposal.source)
    target_node = nodes.get(proposal.target)
    if source_node is None or target_node is None:
        missing = proposal.source if source_node is None else proposal.target
        return ValidationResult.reject(
            "NODE_NOT_FOUND",
            "Source or target node not found",
            node_id=missing,
        )

    source_handle = proposal.source_handle or active.default_output_handle(source_node.type)
    target_handle = proposal.target_handle or active.default_input_handle(target_node.type)

    base = validate_connection(
        source_node.type,
        source_handle,
        target_node.type,
        target_handle,
        registry=active,
    )
    if not base.ok:
        base.node_id = target_node.id
        return base

    output = active.find_output(source_node.type, source_handle)
    input_port = active.find_input(target_node.type, target_handle)
    if output is None:
        return ValidationResult.reject(
            "OUTPUT_NOT_FOUND",
            f"Output '{source_handle}' not found on {source_node.type}",
            node_id=source_node.id,
        )
    if input_port is None:
        return ValidationResult.reject(
            "INPUT_NOT_FOUND",
            f"Input '{target_handle}' not found on {target_node.type}",
            node_id=target_node.id,
        )

    existing = index.inputs_on(target_node.id, input_port.id)
    for edge in existing:
        if edge.source == source_node.id and index.source_handle_of(edge) == output.id:
            return ValidationResult.reject(
                "DUPLICATE_CONNECTION",
                f"Connection from {source_node.id} to '{input_port.label}' already exists",
                node_id=target_node.id,
                edge_id=edge.id,
            )

    if existing and not input_port.allow_multiple:
        sources = ", ".join(edge.source for edge in existing)
        alternatives = _free_inputs(active, index, source_node, target_node, output.data_type, skip=input_port.id)
        suggestion = f"Remove the existing connection from {sources}"
        if alternatives:
            suggestion += f" or connect to another input: {', '.join(alternatives)}"
        return ValidationResult.reject(
            "INPUT_ALREADY_CONNECTED",
            f"Input '{input_port.label}' already has a connection",
            suggestion=suggestion,
            node_id=target_node.id,
            edge_id=existing[0].id,
        )

    return ValidationResult.accept()


def validate_workflow(
    nodes: Iterable[NodeInstance],
    edges: Iterable[Edge],
    *,
    registry: NodeTypeRegistry | None = None,
) -> list[ValidationResult]:
    active = registry or DEFAULT_REGISTRY
    node_list = list(nodes)
    edge_list = list(edges)
    rejections: list[ValidationResult] = []

    node_map: dict[str, NodeInstance] = {}
    for node in node_list:
        if node.id in node_map:
            rejections.append(
                ValidationResult.reject("DUPLICATE_NODE_ID", f"Duplicate node id '{node.id}'", node_id=node.id)
            )
            continue
        node_map[node.id] = node
        if active.get_node_type(node.type) is None:
            rejections.append(
                ValidationResult.reject(
                    "UNKNOWN_NODE_TYPE",
                    f"Unknown node type: '{node.type}'",
                    suggestion=_known_types(active),
                    node_id=node.id,
                )
            )

    counts = Counter(node.type for node in node_map.values())
    for type_id, count in sorted(counts.items()):
        definition = active.get_node_type(type_id)
        if definition is None or definition.max_instances is None:
            continue
        if count > definition.max_instances:
            rejections.append(
                ValidationResult.reject(
                    "MAX_INSTANCES_REACHED",
                    f"Maximum of {definition.max_instances} '{definition.title}' node(s) allowed",
                    suggestion=f"Found {count}; remove the extra instance(s)",
                )
            )

    edge_ids: set[str] = set()
    connected_inputs: Counter[tuple[str, str]] = Counter()
    index = ConnectionIndex.build(node_list, edge_list, registry=active)
    for edge in edge_list:
        if edge.id in edge_ids:
            rejections.append(
                ValidationResult.reject("DUPLICATE_EDGE_ID", f"Duplicate edge id '{edge.id}'", edge_id=edge.id)
            )
            continue
        edge_ids.add(edge.id)

        source = node_map.get(edge.source)
        target = node_map.get(edge.target)
        if source is None or target is None:
            rejections.append(
                ValidationResult.reject(
                    "NODE_NOT_FOUND",
                    f"Edge '{edge.id}' references a missing node",
                    edge_id=edge.id,
                )
            )
            continue

        result = validate_connection(
            source.type,
            index.source_handle_of(edge),
            target.type,
            index.target_handle_of(edge),
            registry=active,
        )
        if not result.ok:
            result.edge_id = edge.id
            result.node_id = target.id
            rejections.append(result)
            continue

        input_port = active.find_input(target.type, index.target_handle_of(edge))
        if input_port is None:
            continue
        key = (target.id, input_port.id)
        connected_inputs[key] += 1
        if connected_inputs[key] > 1 and not input_port.allow_multiple:
            rejections.append(
                ValidationResult.reject(
                    "INPUT_ALREADY_CONNECTED",
                    f"Input '{input_port.label}' already has a connection",
                    suggestion="Remove one of the edges into this input",
                    node_id=target.id,
                    edge_id=edge.id,
                )
            )

    return rejections


def validate_workflow_or_raise(
    nodes: Iterable[NodeInstance],
    edges: Iterable[Edge],
    *,
    registry: NodeTypeRegistry | None = None,
) -> None:
    rejections = validate_workflow(nodes, edges, registry=registry)
    if rejections:
        raise WorkflowValidationError(f"Workflow validation failed:\n{render_rejections(rejections)}")


def _known_types(registry: NodeTypeRegistry) -> str:
    return "Known node types are: " + ", ".join(item.type_id for item in registry.node_types())


def _describe_refs(registry: NodeTypeRegistry, refs: list[PortRef]) -> str:
    seen: list[str] = []
    for ref in refs:
        label = f"{registry.title_of(ref.node_type)} ({ref.handle})"
        if label not in seen:
            seen.append(label)
    return ", ".join(seen)


def _targets_suggestion(registry: NodeTypeRegistry, source_type: str, output: OutputPort) -> str:
    title = registry.title_of(source_type)
    refs = registry.compatible_targets(source_type, output)
    if not refs:
        return f"{title} has no compatible targets for '{output.id}'"
    return f"Valid targets for {title} are: {_describe_refs(registry, refs)}"


def _sources_suggestion(registry: NodeTypeRegistry, target_type: str, input_port: InputPort) -> str:
    title = registry.title_of(target_type)
    refs = registry.compatible_sources(target_type, input_port)
    if not refs:
        return f"{title} has no compatible sources for '{input_port.id}'"
    return f"Valid sources for {title} are: {_describe_refs(registry, refs)}"


def _free_inputs(
    registry: NodeTypeRegistry,
    index: ConnectionIndex,
    source_node: NodeInstance,
    target_node: NodeInstance,
    data_type: str,
    *,
    skip: str,
) -> list[str]:
    definition = registry.get_node_type(target_node.type)
    if definition is None:
        return []
    free: list[str] = []
    for port in definition.inputs:
        if port.id == skip or source_node.type not in port.valid_source_types:
            continue
        if not data_types_match(data_type, port.data_type):
            continue
        if port.allow_multiple or not index.inputs_on(target_node.id, port.id):
            free.append(port.id)
    return free
