from __future__ import annotations

import copy
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal


DataType = Literal[
    "idea",
    "draft",
    "media",
    "platformSettings",
    "audience",
    "hashtags",
    "combinedContent",
    "preview",
    "schedule",
    "analytics",
    "boolean",
    "text",
    "structuredText",
    "any",
]

ANY: DataType = "any"
ALLOWED_DATA_TYPES = {
    "idea",
    "draft",
    "media",
    "platformSettings",
    "audience",
    "hashtags",
    "combinedContent",
    "preview",
    "schedule",
    "analytics",
    "boolean",
    "text",
    "structuredText",
    "any",
}

NodeCategory = Literal[
    "trigger",
    "planning",
    "content",
    "media",
    "platform",
    "audience",
    "publishing",
    "analytics",
    "control",
]

TRIGGER_NODE = "triggerNode"
CONDITIONAL_NODE = "conditionalNode"
CONDITIONAL_INPUT = "input"
CONDITIONAL_OUTPUTS = ("true", "false")

FALLBACK_OUTPUT_HANDLE = "output"
FALLBACK_INPUT_HANDLE = "input"

DEFAULT_OUTPUT_OVERRIDES = {
    "ideaNode": "idea",
    "draftNode": "draft",
    "mediaNode": "media",
    "platformNode": "content",
    "hashtagNode": "hashtags",
    "audienceNode": "audience",
    "previewNode": "approved",
    "scheduleNode": "scheduled",
    "publishNode": "published",
    "conditionalNode": "true",
}

DEFAULT_INPUT_OVERRIDES = {
    "draftNode": "idea",
    "hashtagNode": "draft",
    "mediaNode": "draft",
    "platformNode": "draft",
    "previewNode": "content",
    "conditionalNode": "input",
}


@dataclass(frozen=True, slots=True)
class InputPort:
    id: str
    label: str
    data_type: DataType
    required: bool = False
    allow_multiple: bool = False
    valid_source_types: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True)
class OutputPort:
    id: str
    label: str
    data_type: DataType
    valid_target_types: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True)
class NodeTypeDefinition:
    type_id: str
    title: str
    description: str
    category: NodeCategory
    inputs: tuple[InputPort, ...] = ()
    outputs: tuple[OutputPort, ...] = ()
    initial_data: dict[str, Any] = field(default_factory=dict, compare=False)
    max_instances: int | None = None
    primary_data_type: DataType = ANY

    def new_data(self) -> dict[str, Any]:
        return copy.deepcopy(self.initial_data)

    def input(self, handle: str) -> InputPort | None:
        return next((port for port in self.inputs if port.id == handle), None)

    def output(self, handle: str) -> OutputPort | None:
        return next((port for port in self.outputs if port.id == handle), None)


@dataclass(frozen=True, slots=True)
class PortRef:
    node_type: str
    handle: str


class NodeTypeRegistry:
    """Read-only catalogue of workflow node types and their typed ports."""

    def __init__(self, definitions: Iterable[NodeTypeDefinition] = ()) -> None:
        self._types: dict[str, NodeTypeDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: NodeTypeDefinition) -> None:
        errors = _definition_errors(definition)
        if errors:
            rendered = "\n".join(f"- {error}" for error in errors)
            raise ValueError(f"Invalid node type '{definition.type_id}':\n{rendered}")
        self._types[definition.type_id] = definition

    def get_node_type(self, type_id: str | None) -> NodeTypeDefinition | None:
        if not type_id:
            return None
        return self._types.get(type_id)

    def node_types(self) -> list[NodeTypeDefinition]:
        return list(self._types.values())

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._types

    def title_of(self, type_id: str) -> str:
        definition = self._types.get(type_id)
        return definition.title if definition is not None else type_id

    def default_output_handle(self, type_id: str | None) -> str:
        definition = self.get_node_type(type_id)
        if definition is None:
            return FALLBACK_OUTPUT_HANDLE
        if len(definition.outputs) == 1:
            return definition.outputs[0].id

        override = DEFAULT_OUTPUT_OVERRIDES.get(definition.type_id)
        if override is not None:
            return override

        if definition.output(FALLBACK_OUTPUT_HANDLE) is not None:
            return FALLBACK_OUTPUT_HANDLE
        if definition.outputs:
            return definition.outputs[0].id
        return FALLBACK_OUTPUT_HANDLE

    def default_input_handle(self, type_id: str | None) -> str:
        definition = self.get_node_type(type_id)
        if definition is None:
            return FALLBACK_INPUT_HANDLE
        if len(definition.inputs) == 1:
            return definition.inputs[0].id

        override = DEFAULT_INPUT_OVERRIDES.get(definition.type_id)
        if override is not None:
            return override

        if definition.input(FALLBACK_INPUT_HANDLE) is not None:
            return FALLBACK_INPUT_HANDLE
        if definition.inputs:
            return definition.inputs[0].id
        return FALLBACK_INPUT_HANDLE

    def find_output(self, type_id: str, handle: str | None) -> OutputPort | None:
        """Resolve an output port, falling back to the only output when the name misses."""
        definition = self.get_node_type(type_id)
        if definition is None:
            return None
        port = definition.output(handle or self.default_output_handle(type_id))
        if port is None and len(definition.outputs) == 1:
            return definition.outputs[0]
        return port

    def find_input(self, type_id: str, handle: str | None) -> InputPort | None:
        """Resolve an input port, falling back to the only input when the name misses."""
        definition = self.get_node_type(type_id)
        if definition is None:
            return None
        port = definition.input(handle or self.default_input_handle(type_id))
        if port is None and len(definition.inputs) == 1:
            return definition.inputs[0]
        return port

    def compatible_targets(self, source_type: str, output: OutputPort) -> list[PortRef]:
        refs: list[PortRef] = []
        for target in self._types.values():
            if target.type_id not in output.valid_target_types:
                continue
            for port in target.inputs:
                if source_type not in port.valid_source_types:
                    continue
                if _exempt_from_data_type(source_type, output.id, target.type_id, port.id) or data_types_match(
                    output.data_type, port.data_type
                ):
                    refs.append(PortRef(node_type=target.type_id, handle=port.id))
        return refs

    def compatible_sources(self, target_type: str, input_port: InputPort) -> list[PortRef]:
        refs: list[PortRef] = []
        for source in self._types.values():
            if source.type_id not in input_port.valid_source_types:
                continue
            for port in source.outputs:
                if target_type not in port.valid_target_types:
                    continue
                if _exempt_from_data_type(source.type_id, port.id, target_type, input_port.id) or data_types_match(
                    port.data_type, input_port.data_type
                ):
                    refs.append(PortRef(node_type=source.type_id, handle=port.id))
        return refs


def data_types_match(output_type: str, input_type: str) -> bool:
    return output_type == input_type or output_type == ANY or input_type == ANY


def _exempt_from_data_type(source_type: str, source_handle: str, target_type: str, target_handle: str) -> bool:
    if target_type == CONDITIONAL_NODE and target_handle == CONDITIONAL_INPUT:
        return True
    return source_type == CONDITIONAL_NODE and source_handle in CONDITIONAL_OUTPUTS


def _definition_errors(definition: NodeTypeDefinition) -> list[str]:
    errors: list[str] = []
    for direction, ports in (("input", definition.inputs), ("output", definition.outputs)):
        seen: set[str] = set()
        for port in ports:
            if port.id in seen:
                errors.append(f"Duplicate {direction} port id '{port.id}'.")
            seen.add(port.id)
            if port.data_type not in ALLOWED_DATA_TYPES:
                errors.append(f"{direction.capitalize()} port '{port.id}' has unknown data type '{port.data_type}'.")
    if definition.primary_data_type not in ALLOWED_DATA_TYPES:
        errors.append(f"Unknown primary data type '{definition.primary_data_type}'.")
    if definition.max_instances is not None and definition.max_instances < 1:
        errors.append("max_instances must be at least 1 when set.")
    return errors


def _types(*names: str) -> frozenset[str]:
    return frozenset(names)


_BRANCH_TARGETS = _types(
    "ideaNode",
    "draftNode",
    "mediaNode",
    "platformNode",
    "previewNode",
    "scheduleNode",
    "publishNode",
)


DEFAULT_NODE_TYPES: tuple[NodeTypeDefinition, ...] = (
    NodeTypeDefinition(
        type_id=TRIGGER_NODE,
        title="Workflow Trigger",
        description="Starting point of a workflow run.",
        category="trigger",
        outputs=(
            OutputPort(
                id="output",
                label="Start",
                data_type=ANY,
                valid_target_types=_types("ideaNode", "audienceNode", "draftNode", "mediaNode"),
            ),
        ),
        initial_data={"label": "Start", "triggerType": "manual"},
        max_instances=1,
        primary_data_type=ANY,
    ),
    NodeTypeDefinition(
        type_id="ideaNode",
        title="Content Ideas",
        description="Generate and select content ideas based on a topic.",
        category="planning",
        inputs=(
            InputPort(
                id="trigger",
                label="Trigger",
                data_type=ANY,
                valid_source_types=_types(TRIGGER_NODE, CONDITIONAL_NODE),
            ),
        ),
        outputs=(
            OutputPort(
                id="idea",
                label="Selected Idea",
                data_type="idea",
                valid_target_types=_types("draftNode", "hashtagNode"),
            ),
        ),
        initial_data={"topic": "", "ideas": [], "selectedIdea": "", "hasGenerated": False},
        primary_data_type="idea",
    ),
    NodeTypeDefinition(
        type_id="audienceNode",
        title="Target Audience",
        description="Define the target audience for your content.",
        category="audience",
        inputs=(
            InputPort(
                id="trigger",
                label="Trigger",
                data_type=ANY,
                valid_source_types=_types(TRIGGER_NODE),
            ),
        ),
        outputs=(
            OutputPort(
                id="audience",
                label="Audience Parameters",
                data_type="audience",
                valid_target_types=_types("draftNode", "platformNode"),
            ),
        ),
        initial_data={"ageRange": [18, 65], "interests": [], "demographics": [], "location": []},
        primary_data_type="audience",
    ),
    NodeTypeDefinition(
        type_id="draftNode",
        title="Draft Generator",
        description="Create content drafts from ideas or prompts.",
        category="content",
        inputs=(
            InputPort(
                id="idea",
                label="Content Idea",
                data_type="idea",
                valid_source_types=_types("ideaNode"),
            ),
            InputPort(
                id="audience",
                label="Audience Parameters",
                data_type="audience",
                valid_source_types=_types("audienceNode"),
            ),
            InputPort(
                id="trigger",
                label="Trigger",
                data_type=ANY,
                valid_source_types=_types(TRIGGER_NODE, CONDITIONAL_NODE),
            ),
        ),
        outputs=(
            OutputPort(
                id="draft",
                label="Content Draft",
                data_type="draft",
                valid_target_types=_types("mediaNode", "hashtagNode", "platformNode", CONDITIONAL_NODE, "previewNode"),
            ),
        ),
        initial_data={"prompt": "", "draft": "", "hasGenerated": False},
        primary_data_type="draft",
    ),
    NodeTypeDefinition(
        type_id="hashtagNode",
        title="Hashtag Generator",
        description="Generate relevant hashtags for your content.",
        category="content",
        inputs=(
            InputPort(
                id="draft",
                label="Content Draft",
                data_type="draft",
                required=True,
                valid_source_types=_types("draftNode"),
            ),
            InputPort(
                id="idea",
                label="Content Idea",
                data_type="idea",
                valid_source_types=_types("ideaNode"),
            ),
        ),
        outputs=(
            OutputPort(
                id="hashtags",
                label="Hashtags",
                data_type="hashtags",
                valid_target_types=_types("platformNode", "previewNode"),
            ),
        ),
        initial_data={"hashtags": [], "count": 5, "relevance": "high"},
        primary_data_type="hashtags",
    ),
    NodeTypeDefinition(
        type_id="mediaNode",
        title="Media Selection",
        description="Search for and select images or videos.",
        category="media",
        inputs=(
            InputPort(
                id="draft",
                label="Content Reference",
                data_type="draft",
                valid_source_types=_types("draftNode"),
            ),
            InputPort(
                id="trigger",
                label="Trigger",
                data_type=ANY,
                valid_source_types=_types(TRIGGER_NODE, CONDITIONAL_NODE),
            ),
        ),
        outputs=(
            OutputPort(
                id="media",
                label="Selected Media",
                data_type="media",
                valid_target_types=_types("platformNode", "previewNode", CONDITIONAL_NODE),
            ),
        ),
        initial_data={"query": "", "selectedImage": None, "images": [], "hasSearched": False},
        primary_data_type="media",
    ),
    NodeTypeDefinition(
        type_id="platformNode",
        title="Platform Selection",
        description="Configure platform-specific settings for your content.",
        category="platform",
        inputs=(
            InputPort(
                id="draft",
                label="Content Draft",
                data_type="draft",
                required=True,
                valid_source_types=_types("draftNode", CONDITIONAL_NODE),
            ),
            InputPort(
                id="media",
                label="Media",
                data_type="media",
                allow_multiple=True,
                valid_source_types=_types("mediaNode", CONDITIONAL_NODE),
            ),
            InputPort(
                id="hashtags",
                label="Hashtags",
                data_type="hashtags",
                allow_multiple=True,
                valid_source_types=_types("hashtagNode"),
            ),
            InputPort(
                id="audience",
                label="Audience",
                data_type="audience",
                valid_source_types=_types("audienceNode"),
            ),
        ),
        outputs=(
            OutputPort(
                id="content",
                label="Platform Content",
                data_type="combinedContent",
                valid_target_types=_types("previewNode", "scheduleNode", "publishNode", CONDITIONAL_NODE),
            ),
        ),
        initial_data={"platform": "", "postSettings": {}, "scheduledTime": None},
        primary_data_type="platformSettings",
    ),
    NodeTypeDefinition(
        type_id="previewNode",
        title="Content Preview",
        description="Preview how your content will appear on the selected platform.",
        category="publishing",
        inputs=(
            InputPort(
                id="content",
                label="Platform Content",
                data_type="combinedContent",
                required=True,
                valid_source_types=_types("platformNode", CONDITIONAL_NODE),
            ),
        ),
        outputs=(
            OutputPort(
                id="approved",
                label="Approved Content",
                data_type="combinedContent",
                valid_target_types=_types("scheduleNode", "publishNode"),
            ),
        ),
        initial_data={"viewAs": "mobile", "darkMode": False, "approvalStatus": None, "feedback": ""},
        primary_data_type="preview",
    ),
    NodeTypeDefinition(
        type_id="scheduleNode",
        title="Schedule Post",
        description="Set a time to publish your content.",
        category="publishing",
        inputs=(
            InputPort(
                id="content",
                label="Platform Content",
                data_type="combinedContent",
                required=True,
                valid_source_types=_types("platformNode", "previewNode", CONDITIONAL_NODE),
            ),
        ),
        outputs=(
            OutputPort(
                id="scheduled",
                label="Scheduled Content",
                data_type="combinedContent",
                valid_target_types=_types("publishNode", "analyticsNode"),
            ),
        ),
        initial_data={"scheduledTime": None, "timeZone": "UTC", "recurrence": None},
        primary_data_type="schedule",
    ),
    NodeTypeDefinition(
        type_id="publishNode",
        title="Publish Content",
        description="Publish or queue your content to the selected platform.",
        category="publishing",
        inputs=(
            InputPort(
                id="content",
                label="Platform Content",
                data_type="combinedContent",
                required=True,
                valid_source_types=_types("platformNode", "previewNode", "scheduleNode", CONDITIONAL_NODE),
            ),
        ),
        outputs=(
            OutputPort(
                id="published",
                label="Published Content",
                data_type="combinedContent",
                valid_target_types=_types("analyticsNode"),
            ),
        ),
        initial_data={"status": "draft", "publishedUrl": None, "publishedTime": None},
        max_instances=1,
        primary_data_type="combinedContent",
    ),
    NodeTypeDefinition(
        type_id="analyticsNode",
        title="Analytics Tracking",
        description="Configure analytics for tracking content performance.",
        category="analytics",
        inputs=(
            InputPort(
                id="content",
                label="Published Content",
                data_type="combinedContent",
                required=True,
                valid_source_types=_types("publishNode", "scheduleNode"),
            ),
        ),
        initial_data={"metrics": ["impressions", "engagement", "clicks"], "goals": {}, "integrations": []},
        max_instances=1,
        primary_data_type="analytics",
    ),
    NodeTypeDefinition(
        type_id=CONDITIONAL_NODE,
        title="Conditional Branch",
        description="Create branches in your workflow based on conditions.",
        category="control",
        inputs=(
            InputPort(
                id=CONDITIONAL_INPUT,
                label="Input",
                data_type=ANY,
                required=True,
                allow_multiple=True,
                valid_source_types=_types("draftNode", "mediaNode", "platformNode"),
            ),
        ),
        outputs=(
            OutputPort(
                id="true",
                label="If True",
                data_type=ANY,
                valid_target_types=_BRANCH_TARGETS,
            ),
            OutputPort(
                id="false",
                label="If False",
                data_type=ANY,
                valid_target_types=_BRANCH_TARGETS,
            ),
        ),
        initial_data={"condition": "", "conditionValue": None, "customCondition": "", "result": None},
        primary_data_type="boolean",
    ),
)


DEFAULT_REGISTRY = NodeTypeRegistry(DEFAULT_NODE_TYPES)


def get_node_type(type_id: str | None) -> NodeTypeDefinition | None:
    return DEFAULT_REGISTRY.get_node_type(type_id)


def get_default_output_handle(type_id: str | None) -> str:
    return DEFAULT_REGISTRY.default_output_handle(type_id)


def get_default_input_handle(type_id: str | None) -> str:
    return DEFAULT_REGISTRY.default_input_handle(type_id)
