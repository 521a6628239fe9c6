from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from content_flow.graph.registry import ANY, DEFAULT_REGISTRY, NodeTypeRegistry


LOGGER = logging.getLogger(__name__)

TransformRule = Callable[[Any], Any]


@dataclass(slots=True)
class Compatibility:
    compatible: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.compatible


# Coarse DataType table, checked independently of the per-type rules below.
COMPATIBILITY_TABLE: dict[str, frozenset[str]] = {
    "idea": frozenset({"draft", "hashtags"}),
    "audience": frozenset({"draft", "platformSettings"}),
    "draft": frozenset({"media", "hashtags", "combinedContent", "platformSettings", "preview"}),
    "media": frozenset({"platformSettings", "combinedContent"}),
    "hashtags": frozenset({"platformSettings", "combinedContent"}),
    "platformSettings": frozenset({"preview", "combinedContent", "schedule"}),
    "preview": frozenset({"schedule", "combinedContent"}),
    "schedule": frozenset({"combinedContent", "analytics"}),
    "combinedContent": frozenset({"preview", "schedule", "analytics"}),
}


def is_compatible(from_data_type: str, to_data_type: str) -> Compatibility:
    if from_data_type == to_data_type or ANY in (from_data_type, to_data_type):
        return Compatibility(compatible=True)
    if to_data_type in COMPATIBILITY_TABLE.get(from_data_type, frozenset()):
        return Compatibility(compatible=True)
    return Compatibility(
        compatible=False,
        reason=f"{from_data_type} cannot be converted to {to_data_type}",
    )


def transform(
    payload: Any,
    from_type: str,
    from_data_type: str,
    to_type: str,
    to_data_type: str,
) -> Any:
    if from_data_type == to_data_type:
        return payload

    rule = TRANSFORM_RULES.get((from_type, to_type))
    if rule is None:
        LOGGER.warning("Transformation gap: no rule from %s to %s; passing payload through", from_type, to_type)
        return payload
    return rule(payload)


def has_rule(from_type: str, to_type: str) -> bool:
    return (from_type, to_type) in TRANSFORM_RULES


def adapt_payload(
    payload: Any,
    *,
    source_type: str,
    target_type: str,
    source_port_type: str = ANY,
    target_port_type: str = ANY,
    registry: NodeTypeRegistry | None = None,
) -> Any:
    """Reshape an upstream node's data for the downstream node.

    Edges that touch an ``any`` port (trigger outputs, conditional branches)
    carry the payload untouched.
    """
    if ANY in (source_port_type, target_port_type):
        return payload

    active = registry or DEFAULT_REGISTRY
    source_def = active.get_node_type(source_type)
    target_def = active.get_node_type(target_type)
    if source_def is None or target_def is None:
        return payload

    from_data_type = source_def.primary_data_type
    to_data_type = target_def.primary_data_type
    compatibility = is_compatible(from_data_type, to_data_type)
    if not compatibility:
        LOGGER.debug("Skipping reshape %s -> %s: %s", source_type, target_type, compatibility.reason)
        return payload
    return transform(payload, source_type, from_data_type, target_type, to_data_type)


def _as_dict(payload: Any) -> dict[str, Any]:
    if isinstance(payload, Mapping):
        return dict(payload)
    return {}


def _idea_title(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    data = _as_dict(payload)
    return str(data.get("title") or data.get("selectedIdea") or data.get("topic") or "")


def _draft_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    data = _as_dict(payload)
    return str(data.get("content") or data.get("draft") or "")


def _platform_text(data: Mapping[str, Any]) -> str:
    formatted = data.get("formattedContent")
    if isinstance(formatted, str) and formatted:
        return formatted
    content = data.get("content")
    if isinstance(content, str):
        return content
    platform_content = data.get("platformContent")
    if isinstance(platform_content, Mapping):
        return str(platform_content.get("draft") or "")
    return ""


def _media_urls(value: Any) -> list[str]:
    if not value:
        return []
    items = value if isinstance(value, list) else [value]
    urls: list[str] = []
    for item in items:
        if isinstance(item, str):
            urls.append(item)
        elif isinstance(item, Mapping) and item.get("url"):
            urls.append(str(item["url"]))
    return urls


def _platform_media(data: Mapping[str, Any]) -> list[str]:
    if "media" in data:
        return _media_urls(data.get("media"))
    platform_content = data.get("platformContent")
    if isinstance(platform_content, Mapping):
        return _media_urls(platform_content.get("media"))
    return []


def _platform_hashtags(data: Mapping[str, Any]) -> list[str]:
    hashtags = data.get("hashtags")
    if hashtags is None and isinstance(data.get("platformContent"), Mapping):
        hashtags = data["platformContent"].get("hashtags")
    return list(hashtags or [])


def _idea_to_draft(payload: Any) -> dict[str, Any]:
    title = _idea_title(payload)
    return {
        "content": "",
        "ideaSource": title,
        "properties": {
            "basePrompt": title,
            "description": _as_dict(payload).get("description"),
        },
    }


def _idea_to_hashtags(payload: Any) -> dict[str, Any]:
    return {"tags": [], "relevance": 1.0, "seedText": _idea_title(payload)}


def _audience_summary(data: Mapping[str, Any]) -> str:
    parts: list[str] = []
    age_range = data.get("ageRange")
    if isinstance(age_range, (list, tuple)) and len(age_range) == 2:
        parts.append(f"ages {age_range[0]}-{age_range[1]}")
    elif isinstance(age_range, Mapping):
        parts.append(f"ages {age_range.get('min')}-{age_range.get('max')}")
    for key in ("interests", "demographics", "location"):
        values = data.get(key) or []
        if values:
            parts.append(f"{key}: {', '.join(str(item) for item in values)}")
    return "; ".join(parts)


def _audience_to_draft(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    return {"audienceContext": _audience_summary(data), "audience": data}


def _audience_to_platform(payload: Any) -> dict[str, Any]:
    return {"audience": _as_dict(payload)}


def _draft_to_media_query(payload: Any) -> str:
    data = _as_dict(payload)
    query = str(data.get("ideaSource") or data.get("prompt") or "")
    content = _draft_text(payload)
    if content:
        first_line = content.split("\n")[0]
        clean = re.sub(r"^#+ ", "", first_line)
        clean = re.sub(r"^\d+\.\s+", "", clean)
        query = clean or query
    return query


def _draft_to_hashtags(payload: Any) -> dict[str, Any]:
    return {"tags": [], "relevance": 1.0}


def _draft_to_platform(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    return {"content": _draft_text(payload), "ideaSource": data.get("ideaSource") or data.get("prompt")}


def _draft_to_preview(payload: Any) -> dict[str, Any]:
    return {
        "platform": None,
        "content": {"text": _draft_text(payload), "mediaUrls": [], "hashtags": []},
        "renderAs": "mobile",
        "darkMode": False,
    }


def _hashtags_to_platform(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    return {"hashtags": list(data.get("hashtags") or data.get("tags") or [])}


def _media_to_platform(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    selected = data.get("selectedImage")
    media = [selected] if selected else list(data.get("images") or [])
    return {
        "media": [
            {
                "url": item["url"] if isinstance(item, Mapping) else str(item),
                "type": "image",
                "alt": item.get("alt") if isinstance(item, Mapping) else None,
            }
            for item in media
        ]
    }


def _platform_to_preview(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    return {
        "platform": data.get("platformId") or data.get("platform"),
        "content": {
            "text": _platform_text(data),
            "mediaUrls": _platform_media(data),
            "hashtags": _platform_hashtags(data),
        },
        "renderAs": "mobile",
        "darkMode": False,
    }


def _platform_to_schedule(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    return {
        "platform": data.get("platformId") or data.get("platform"),
        "content": _platform_text(data),
        "scheduledTime": data.get("scheduledTime"),
    }


def _platform_to_publish(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    return {
        "platform": data.get("platformId") or data.get("platform"),
        "content": _platform_text(data),
        "mediaUrls": _platform_media(data),
        "hashtags": _platform_hashtags(data),
        "readyToPublish": bool(data.get("isReady")),
    }


def _preview_to_schedule(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    return {
        "platform": data.get("platform"),
        "content": data.get("content"),
        "approved": data.get("approvalStatus") == "approved",
    }


def _preview_to_publish(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    status = data.get("approvalStatus") or "pending"
    return {
        "platform": data.get("platform"),
        "content": data.get("content"),
        "approvalStatus": status,
        "readyToPublish": status == "approved",
    }


def _schedule_to_publish(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    scheduled_time = data.get("scheduledTime")
    return {
        "isScheduled": scheduled_time is not None,
        "scheduledTime": scheduled_time,
        "timeZone": data.get("timeZone") or "UTC",
        "recurrence": data.get("recurrence"),
        "readyToPublish": scheduled_time is not None,
    }


def _schedule_to_analytics(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    return {"trackFrom": data.get("scheduledTime"), "timeZone": data.get("timeZone") or "UTC"}


def _publish_to_analytics(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    return {
        "publishedUrl": data.get("publishedUrl"),
        "publishedTime": data.get("publishedTime"),
        "status": data.get("status"),
        "trackable": data.get("status") == "published",
    }


TRANSFORM_RULES: dict[tuple[str, str], TransformRule] = {
    ("ideaNode", "draftNode"): _idea_to_draft,
    ("ideaNode", "hashtagNode"): _idea_to_hashtags,
    ("audienceNode", "draftNode"): _audience_to_draft,
    ("audienceNode", "platformNode"): _audience_to_platform,
    ("draftNode", "mediaNode"): _draft_to_media_query,
    ("draftNode", "hashtagNode"): _draft_to_hashtags,
    ("draftNode", "platformNode"): _draft_to_platform,
    ("draftNode", "previewNode"): _draft_to_preview,
    ("hashtagNode", "platformNode"): _hashtags_to_platform,
    ("mediaNode", "platformNode"): _media_to_platform,
    ("platformNode", "previewNode"): _platform_to_preview,
    ("platformNode", "scheduleNode"): _platform_to_schedule,
    ("platformNode", "publishNode"): _platform_to_publish,
    ("previewNode", "scheduleNode"): _preview_to_schedule,
    ("previewNode", "publishNode"): _preview_to_publish,
    ("scheduleNode", "publishNode"): _schedule_to_publish,
    ("scheduleNode", "analyticsNode"): _schedule_to_analytics,
    ("publishNode", "analyticsNode"): _publish_to_analytics,
}
