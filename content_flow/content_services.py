from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from content_flow.settings import AppSettings


LOGGER = logging.getLogger(__name__)
LIST_PREFIX_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")
PLACEHOLDER_IMAGE_BASE = "https://via.placeholder.com"


class ContentServiceError(RuntimeError):
    """Raised when a content collaborator cannot produce a result."""


class ContentServices(Protocol):
    async def generate_ideas(self, topic: str) -> list[str]: ...

    async def generate_draft(self, prompt: str) -> str: ...

    async def suggest_images(self, query: str) -> list[dict[str, Any]]: ...


@dataclass(slots=True)
class ServiceCall:
    operation: str
    argument: str


class TemplateContentServices:
    """Deterministic stand-in collaborators used when no model is configured."""

    def __init__(self) -> None:
        self.calls: list[ServiceCall] = []

    async def generate_ideas(self, topic: str) -> list[str]:
        self.calls.append(ServiceCall("generate_ideas", topic))
        LOGGER.debug("Generating ideas for topic: %s", topic)
        return [
            f"{topic} - strategy guide for beginners",
            f"How to use {topic} for business growth",
            f"10 trends in {topic} for 2025",
            f"The ultimate {topic} checklist",
            f"Why {topic} matters for your brand",
        ]

    async def generate_draft(self, prompt: str) -> str:
        self.calls.append(ServiceCall("generate_draft", prompt))
        LOGGER.debug("Generating draft for prompt: %s", prompt)
        return (
            f"# {prompt}\n\n"
            "This is a generated draft based on your prompt. It would contain multiple paragraphs "
            "of relevant content that addresses the topic comprehensively.\n\n"
            "## Key Points\n\n"
            "- First important point about the topic\n"
            "- Second key consideration\n"
            "- Third strategic element\n\n"
            "## Conclusion\n\n"
            f"Summarizing thoughts about {prompt} and next steps to consider."
        )

    async def suggest_images(self, query: str) -> list[dict[str, Any]]:
        self.calls.append(ServiceCall("suggest_images", query))
        LOGGER.debug("Searching images for query: %s", query)
        slug = re.sub(r"[^a-z0-9]+", "-", query.lower()).strip("-") or "image"
        return [
            {
                "id": f"img_{slug}_{position}",
                "url": f"{PLACEHOLDER_IMAGE_BASE}/600",
                "urls": {
                    "thumb": f"{PLACEHOLDER_IMAGE_BASE}/150",
                    "small": f"{PLACEHOLDER_IMAGE_BASE}/300",
                    "regular": f"{PLACEHOLDER_IMAGE_BASE}/600",
                },
                "alt": f"Image for {query} {position}",
                "description": description,
                "user": {"name": "Placeholder User"},
            }
            for position, description in (
                (1, f"A beautiful image related to {query}"),
                (2, f"Another stunning image related to {query}"),
            )
        ]


@dataclass(slots=True)
class LLMServiceConfig:
    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.5
    idea_count: int = 5
    system_prompt: str = (
        "You are a social media content strategist. Answer with the requested content only, "
        "without preamble."
    )


class LLMContentServices:
    """Idea and draft generation backed by any LangChain chat model.

    Image lookup is delegated to ``image_services`` since chat models do not
    return media.
    """

    def __init__(
        self,
        model: BaseChatModel,
        *,
        config: LLMServiceConfig | None = None,
        image_services: ContentServices | None = None,
    ) -> None:
        self._model = model
        self._config = config or LLMServiceConfig()
        self._images = image_services or TemplateContentServices()

    @classmethod
    def from_settings(cls, model: BaseChatModel, settings: AppSettings) -> LLMContentServices:
        return cls(
            model,
            config=LLMServiceConfig(
                retry_attempts=settings.llm_retry_attempts,
                retry_backoff_seconds=settings.llm_retry_backoff_seconds,
            ),
        )

    async def generate_ideas(self, topic: str) -> list[str]:
        text = await self._invoke(
            [
                SystemMessage(content=self._config.system_prompt),
                HumanMessage(
                    content=(
                        f"List {self._config.idea_count} distinct content ideas about '{topic}'. "
                        "Return one idea per line."
                    )
                ),
            ]
        )
        ideas = [LIST_PREFIX_RE.sub("", line).strip() for line in text.splitlines()]
        ideas = [idea for idea in ideas if idea]
        if not ideas:
            raise ContentServiceError(f"Model returned no ideas for topic '{topic}'.")
        return ideas[: self._config.idea_count]

    async def generate_draft(self, prompt: str) -> str:
        text = await self._invoke(
            [
                SystemMessage(content=self._config.system_prompt),
                HumanMessage(content=f"Write a markdown social media draft for: {prompt}"),
            ]
        )
        if not text.strip():
            raise ContentServiceError("Model returned an empty draft.")
        return text.strip()

    async def suggest_images(self, query: str) -> list[dict[str, Any]]:
        return await self._images.suggest_images(query)

    async def _invoke(self, messages: Sequence[BaseMessage]) -> str:
        attempts = max(1, self._config.retry_attempts)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = await self._model.ainvoke(list(messages))
                if not isinstance(response, AIMessage):
                    raise ContentServiceError(
                        f"Unexpected response type from model: {type(response).__name__}"
                    )
                return _message_text(response.content)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if attempt >= attempts:
                    break
                delay = self._config.retry_backoff_seconds * attempt
                LOGGER.debug(
                    "Content model call attempt %s/%s failed (%s). Retrying in %.1fs",
                    attempt,
                    attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)

        raise ContentServiceError(f"Content model call failed after retries: {last_error}")


def _message_text(content: object) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "".join(parts)
    return str(content)
