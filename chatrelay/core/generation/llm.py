from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from chatrelay.schemas.message import FilePart, TextPart, parse_parts


@dataclass
class Delta:
    kind: str  # "text", "reasoning" or "usage"
    text: str = ""
    usage: Optional[Dict[str, Any]] = None


class GenerationEngine:
    """
    Thin wrapper over a chat completions API (compatible with OpenRouter/OpenAI).

    ``stream`` yields output deltas lazily and may raise mid-way; the final
    delta carries the provider-reported token usage when available.
    """

    def __init__(
        self,
        base_url: str = "https://openrouter.ai/api/v1",
        api_key: str = "",
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._base_url = base_url
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # created on first use so a missing key only fails the call, not startup
        if self._client is None:
            self._client = AsyncOpenAI(base_url=self._base_url, api_key=self._api_key or "unset")
        return self._client

    async def stream(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        reasoning: bool = False,
    ) -> AsyncIterator[Delta]:
        req_params: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if reasoning:
            req_params["extra_body"] = {"reasoning": {"enabled": True}}

        completion = await self.client.chat.completions.create(**req_params)
        async for chunk in completion:
            if chunk.choices:
                delta = chunk.choices[0].delta
                # OpenRouter reports thinking as "reasoning", others as "reasoning_content"
                reasoning_text = getattr(delta, "reasoning", None) or getattr(
                    delta, "reasoning_content", None
                )
                if reasoning_text:
                    yield Delta("reasoning", text=reasoning_text)
                if delta.content:
                    yield Delta("text", text=delta.content)
            if getattr(chunk, "usage", None):
                yield Delta("usage", usage=chunk.usage.model_dump(exclude_none=True))

    async def complete(self, model: str, messages: List[Dict[str, Any]]) -> str:
        completion = await self.client.chat.completions.create(model=model, messages=messages)
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""


def classify_generation_error(exc: BaseException) -> str:
    """Map a provider failure to a user-facing error code."""
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code == 402:
            return "billing_required:chat"
        if exc.status_code == 429:
            return "rate_limit:chat"
    text = str(exc).lower()
    if "credit card" in text or "payment required" in text or "billing" in text:
        return "billing_required:chat"
    return "offline:chat"


def to_model_messages(system_prompt: str, messages: list) -> List[Dict[str, Any]]:
    """
    Convert stored messages to the chat completions format.

    Text becomes plain content, image files become ``image_url`` items;
    reasoning and tool parts are not sent back to the model.
    """
    conversation: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for message in messages:
        parts = parse_parts(message.parts)
        files = [part for part in parts if isinstance(part, FilePart)]
        text = "".join(part.text for part in parts if isinstance(part, TextPart))
        if message.role == "user" and files:
            content: List[Dict[str, Any]] = []
            if text:
                content.append({"type": "text", "text": text})
            for part in files:
                content.append({"type": "image_url", "image_url": {"url": part.url}})
            conversation.append({"role": "user", "content": content})
        elif text:
            conversation.append({"role": message.role, "content": text})
    return conversation
