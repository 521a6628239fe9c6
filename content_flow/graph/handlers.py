from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from content_flow.content_services import ContentServices
from content_flow.graph.expressions import ExpressionError, evaluate_condition
from content_flow.graph.registry import CONDITIONAL_INPUT, CONDITIONAL_NODE


LOGGER = logging.getLogger(__name__)

NON_WORD_RE = re.compile(r"[^\w\s]")
NON_ALNUM_RE = re.compile(r"[^a-z0-9]")

DEFAULT_HASHTAG_COUNT = 5
DEFAULT_CONTENT_LENGTH_THRESHOLD = 250
TWITTER_LIMIT = 280
TIKTOK_LIMIT = 150
INSTAGRAM_HASHTAG_LIMIT = 30
LINKEDIN_HASHTAG_LIMIT = 5


class NodeExecutionError(RuntimeError):
    """Raised by a node handler; recorded on the node and never aborts the run."""


InputEntry = dict[str, Any]


@dataclass(slots=True)
class HandlerContext:
    node_id: str
    node_type: str
    data: dict[str, Any]
    inputs: dict[str, list[InputEntry]]
    services: ContentServices

    def entries(self, handle: str) -> list[InputEntry]:
        return list(self.inputs.get(handle, []))

    def upstream(self, handle: str) -> list[dict[str, Any]]:
        """Upstream node data on ``handle``, seen through conditional branches."""
        return [upstream_data(entry) for entry in self.entries(handle)]

    def first(self, handle: str) -> dict[str, Any] | None:
        items = self.upstream(handle)
        return items[0] if items else None


@dataclass(slots=True)
class HandlerResult:
    data: dict[str, Any] = field(default_factory=dict)
    status: str = "success"


NodeHandler = Callable[[HandlerContext], Awaitable[HandlerResult]]


def upstream_data(entry: InputEntry) -> dict[str, Any]:
    data = entry.get("data")
    if not isinstance(data, Mapping):
        return {}
    if entry.get("nodeType") == CONDITIONAL_NODE and isinstance(data.get("passthrough"), Mapping):
        return dict(data["passthrough"])
    return dict(data)


async def execute_idea_node(context: HandlerContext) -> HandlerResult:
    data = context.data
    topic = data.get("topic") or ""
    if not topic:
        trigger = context.first("trigger") or {}
        topic = trigger.get("topic") or ""

    if topic and not data.get("hasGenerated"):
        try:
            ideas = await context.services.generate_ideas(topic)
        except Exception as exc:  # noqa: BLE001
            raise NodeExecutionError("Failed to generate ideas from API") from exc
        return HandlerResult(
            data={
                "topic": topic,
                "ideas": ideas,
                "hasGenerated": True,
                "selectedIdea": data.get("selectedIdea") or (ideas[0] if ideas else None),
            }
        )
    return HandlerResult(data=data)


async def execute_audience_node(context: HandlerContext) -> HandlerResult:
    summary = describe_audience(context.data)
    if summary:
        return HandlerResult(data={**context.data, "audienceContext": summary})
    return HandlerResult(data=context.data)


async def execute_draft_node(context: HandlerContext) -> HandlerResult:
    data = context.data
    prompt = data.get("prompt") or ""
    if not prompt:
        idea = context.first("idea")
        if idea and idea.get("selectedIdea"):
            prompt = idea["selectedIdea"]

    audience = context.first("audience")
    audience_context = describe_audience(audience) if audience else ""

    if prompt and not data.get("draft"):
        full_prompt = f"{prompt}\n{audience_context}" if audience_context else prompt
        try:
            draft = await context.services.generate_draft(full_prompt)
        except Exception as exc:  # noqa: BLE001
            raise NodeExecutionError("Failed to generate draft from API") from exc
        result: dict[str, Any] = {"prompt": prompt, "draft": draft, "hasGenerated": True}
        if audience_context:
            result["audienceContext"] = audience_context
        return HandlerResult(data=result)

    if audience_context and not data.get("audienceContext"):
        return HandlerResult(data={**data, "audienceContext": audience_context})
    return HandlerResult(data=data)


async def execute_media_node(context: HandlerContext) -> HandlerResult:
    data = context.data
    query = data.get("query") or ""
    if not query:
        draft = context.first("draft")
        if draft and draft.get("prompt"):
            query = draft["prompt"]

    if query and not data.get("hasSearched"):
        try:
            images = await context.services.suggest_images(query)
        except Exception as exc:  # noqa: BLE001
            raise NodeExecutionError("Failed to search for images from API") from exc
        return HandlerResult(
            data={
                "query": query,
                "images": images,
                "hasSearched": True,
                "selectedImage": data.get("selectedImage") or (images[0] if images else None),
            }
        )
    return HandlerResult(data=data)


async def execute_hashtag_node(context: HandlerContext) -> HandlerResult:
    data = context.data
    draft = context.first("draft")
    if draft and not data.get("hashtags"):
        content = draft.get("draft") or draft.get("prompt") or ""
        if content:
            count = int(data.get("count") or DEFAULT_HASHTAG_COUNT)
            return HandlerResult(
                data={
                    "hashtags": generate_hashtags_from_content(content, count),
                    "count": count,
                    "source": "draft",
                    "sourceContent": content[:100] + "...",
                }
            )
    return HandlerResult(data=data)


async def execute_platform_node(context: HandlerContext) -> HandlerResult:
    data = context.data
    platform_content: dict[str, Any] = {
        "platform": data.get("platform") or "",
        "draft": "",
        "media": None,
        "hashtags": [],
        "audience": None,
        "postSettings": data.get("postSettings") or {},
    }

    draft = context.first("draft")
    if draft is not None:
        platform_content["draft"] = draft.get("draft") or ""
        platform_content["prompt"] = draft.get("prompt") or ""

    for media in context.upstream("media"):
        if media.get("selectedImage"):
            platform_content["media"] = media["selectedImage"]
            break

    hashtags: list[str] = []
    for item in context.upstream("hashtags"):
        for tag in item.get("hashtags") or []:
            if tag not in hashtags:
                hashtags.append(tag)
    platform_content["hashtags"] = hashtags

    audience = context.first("audience")
    if audience is not None:
        platform_content["audience"] = {
            "ageRange": audience.get("ageRange"),
            "gender": audience.get("gender"),
            "interests": audience.get("interests"),
            "locations": audience.get("locations") or audience.get("location"),
        }

    if platform_content["platform"] and platform_content["draft"]:
        formatted = format_content_for_platform(
            platform_content["draft"],
            platform_content["platform"],
            platform_content["hashtags"],
        )
        return HandlerResult(
            data={
                **data,
                "platformContent": platform_content,
                "formattedContent": formatted,
                "isReady": True,
            }
        )
    return HandlerResult(data=data)


async def execute_preview_node(context: HandlerContext) -> HandlerResult:
    data = context.data
    upstream = context.first("content")
    if upstream:
        platform = upstream.get("platform")
        platform_content = upstream.get("platformContent")
        if platform and isinstance(platform_content, Mapping):
            return HandlerResult(
                data={
                    **data,
                    "platform": platform,
                    "content": {
                        **platform_content,
                        "formatted": upstream.get("formattedContent"),
                        "warnings": validate_platform_content(platform_content),
                    },
                    "previewGenerated": True,
                    "approvalStatus": data.get("approvalStatus") or "pending",
                }
            )
    return HandlerResult(data=data)


async def execute_schedule_node(context: HandlerContext) -> HandlerResult:
    data = context.data
    entries = context.entries("content")
    if not entries:
        return HandlerResult(data=data)

    transformed = entries[0].get("transformed")
    upstream = transformed if isinstance(transformed, Mapping) else upstream_data(entries[0])
    scheduled_time = data.get("scheduledTime") or upstream.get("scheduledTime")
    return HandlerResult(
        data={
            **data,
            "platform": upstream.get("platform"),
            "content": upstream.get("content"),
            "scheduledTime": scheduled_time,
            "isScheduled": scheduled_time is not None,
            "timeZone": data.get("timeZone") or "UTC",
        }
    )


async def execute_publish_node(context: HandlerContext) -> HandlerResult:
    data = context.data
    entries = context.entries("content")
    if not entries:
        return HandlerResult(data=data)

    transformed = entries[0].get("transformed")
    upstream = transformed if isinstance(transformed, Mapping) else upstream_data(entries[0])
    if upstream.get("approvalStatus") == "rejected":
        raise NodeExecutionError("Content was rejected in preview and cannot be published")

    # Publishing only queues the post; no platform API is called.
    status = "scheduled" if upstream.get("isScheduled") or data.get("scheduledTime") else "queued"
    return HandlerResult(
        data={
            **data,
            "status": status,
            "platform": upstream.get("platform") or data.get("platform"),
            "content": upstream.get("content"),
            "scheduledTime": upstream.get("scheduledTime") or data.get("scheduledTime"),
        }
    )


async def execute_analytics_node(context: HandlerContext) -> HandlerResult:
    data = context.data
    entries = context.entries("content")
    if not entries:
        return HandlerResult(data=data)

    source = entries[0]
    upstream = upstream_data(source)
    return HandlerResult(
        data={
            **data,
            "tracking": {
                "sourceNodeId": source.get("nodeId"),
                "sourceStatus": upstream.get("status"),
                "metrics": list(data.get("metrics") or []),
            },
            "isTracking": True,
        }
    )


async def execute_conditional_node(context: HandlerContext) -> HandlerResult:
    data = context.data
    condition = data.get("condition")
    passthrough: dict[str, Any] = {}
    for item in context.upstream(CONDITIONAL_INPUT):
        passthrough.update(item)

    if not condition:
        return HandlerResult(data={**data, "result": False, "passthrough": passthrough})

    inputs = context.entries(CONDITIONAL_INPUT)
    if condition == "hasDraft":
        result = check_draft_exists(inputs)
    elif condition == "hasImage":
        result = check_image_exists(inputs)
    elif condition == "isPlatformSelected":
        result = check_platform_selected(inputs)
    elif condition == "contentLength":
        threshold = data.get("conditionValue") or DEFAULT_CONTENT_LENGTH_THRESHOLD
        result = check_content_length(inputs, int(threshold))
    elif condition == "custom":
        result = evaluate_custom_condition(inputs, data.get("customCondition"), node_id=context.node_id)
    else:
        result = False

    return HandlerResult(
        data={
            **data,
            "result": result,
            "conditionEvaluated": True,
            "passthrough": passthrough,
        }
    )


async def execute_passthrough_node(context: HandlerContext) -> HandlerResult:
    return HandlerResult(data=context.data)


NODE_HANDLERS: dict[str, NodeHandler] = {
    "triggerNode": execute_passthrough_node,
    "ideaNode": execute_idea_node,
    "audienceNode": execute_audience_node,
    "draftNode": execute_draft_node,
    "mediaNode": execute_media_node,
    "hashtagNode": execute_hashtag_node,
    "platformNode": execute_platform_node,
    "previewNode": execute_preview_node,
    "scheduleNode": execute_schedule_node,
    "publishNode": execute_publish_node,
    "analyticsNode": execute_analytics_node,
    CONDITIONAL_NODE: execute_conditional_node,
}


def handler_for(node_type: str) -> NodeHandler:
    return NODE_HANDLERS.get(node_type, execute_passthrough_node)


def check_draft_exists(inputs: list[InputEntry]) -> bool:
    return any(upstream_data(entry).get("draft") for entry in inputs)


def check_image_exists(inputs: list[InputEntry]) -> bool:
    for entry in inputs:
        data = upstream_data(entry)
        if entry.get("nodeType") == "mediaNode":
            if data.get("selectedImage"):
                return True
        elif data.get("selectedImage") or data.get("media"):
            return True
    return False


def check_platform_selected(inputs: list[InputEntry]) -> bool:
    return any(upstream_data(entry).get("platform") for entry in inputs)


def count_words(text: str) -> int:
    return len(text.split())


def check_content_length(inputs: list[InputEntry], threshold: int) -> bool:
    for entry in inputs:
        data = upstream_data(entry)
        content = data.get("draft") or data.get("content") or ""
        if isinstance(content, str) and content and count_words(content) >= threshold:
            return True
    return False


def evaluate_custom_condition(inputs: list[InputEntry], expression: str | None, *, node_id: str = "") -> bool:
    if not expression:
        return False

    values: dict[str, Any] = {"draft": "", "image": None, "platform": "", "hashtags": []}
    for entry in inputs:
        data = upstream_data(entry)
        if data.get("draft"):
            values["draft"] = data["draft"]
        if data.get("selectedImage"):
            values["image"] = data["selectedImage"]
        if data.get("platform"):
            values["platform"] = data["platform"]
        if data.get("hashtags"):
            values["hashtags"] = data["hashtags"]

    try:
        return evaluate_condition(expression, values)
    except ExpressionError as exc:
        LOGGER.warning("Custom condition on %s evaluated as false: %s", node_id or "conditional node", exc)
        return False


def describe_audience(audience: Mapping[str, Any] | None) -> str:
    if not audience:
        return ""
    age_range = audience.get("ageRange")
    interests = audience.get("interests") or []
    if not age_range and not interests:
        return ""

    text = "\nTarget audience:"
    if isinstance(age_range, Mapping):
        text += f" Age {age_range.get('min')}-{age_range.get('max')}"
    elif isinstance(age_range, (list, tuple)) and len(age_range) == 2:
        text += f" Age {age_range[0]}-{age_range[1]}"
    if interests:
        text += f" Interests: {', '.join(str(item) for item in interests)}"
    return text


def generate_hashtags_from_content(content: str, count: int = DEFAULT_HASHTAG_COUNT) -> list[str]:
    """Pick the most frequent words longer than three characters as hashtags."""
    words = [word for word in NON_WORD_RE.sub("", content.lower()).split() if len(word) > 3]
    frequency = Counter(words)
    unique = list(dict.fromkeys(words))
    ranked = sorted(unique, key=lambda word: -frequency[word])
    tags = [NON_ALNUM_RE.sub("", word) for word in ranked[:count]]
    return [tag for tag in tags if tag]


def _hashtag_text(hashtags: list[str]) -> str:
    return " ".join(f"#{tag}" for tag in hashtags)


def format_content_for_platform(content: str, platform: str, hashtags: list[str] | None = None) -> str:
    tags = list(hashtags or [])
    formatted = content

    if platform == "twitter":
        if len(formatted) > TWITTER_LIMIT:
            formatted = formatted[: TWITTER_LIMIT - 3] + "..."
        tag_text = _hashtag_text(tags)
        if tags and len(formatted) + len(tag_text) + 1 <= TWITTER_LIMIT:
            formatted = f"{formatted}\n{tag_text}"
        return formatted

    if platform == "instagram":
        return f"{formatted}\n\n{_hashtag_text(tags)}" if tags else formatted

    if platform in {"facebook", "linkedin"}:
        return f"{formatted}\n\n{_hashtag_text(tags[:3])}" if tags else formatted

    if platform == "tiktok":
        if len(formatted) > TIKTOK_LIMIT:
            formatted = formatted[: TIKTOK_LIMIT - 3] + "..."
        return f"{formatted}\n{_hashtag_text(tags)}" if tags else formatted

    return f"{formatted}\n\n{_hashtag_text(tags)}" if tags else formatted


def validate_platform_content(content: Mapping[str, Any]) -> list[str]:
    warnings: list[str] = []
    draft = content.get("draft") or ""
    platform = content.get("platform")
    hashtags = content.get("hashtags") or []

    if not draft.strip():
        warnings.append("Content text is empty")
    if platform == "twitter" and len(draft) > TWITTER_LIMIT:
        warnings.append("Content exceeds Twitter's 280 character limit")
    if platform == "instagram" and not content.get("media"):
        warnings.append("Instagram posts typically require an image")
    if platform == "instagram" and len(hashtags) > INSTAGRAM_HASHTAG_LIMIT:
        warnings.append("Instagram limits posts to 30 hashtags")
    if platform == "linkedin" and len(hashtags) > LINKEDIN_HASHTAG_LIMIT:
        warnings.append("LinkedIn posts perform better with fewer hashtags (3-5 recommended)")
    return warnings
