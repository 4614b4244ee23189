"""LLM provider boundary — the inference collaborator the coordinator calls once per request."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from .context.models import Context


class ChatRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ChatMessage(BaseModel):
    role: ChatRole
    content: str


class ChatRequest(BaseModel):
    """One inference call: the rendered context plus the model to run it on."""

    model: str
    messages: list[ChatMessage]

    @classmethod
    def from_context(cls, context: Context, model: str, system_prompt: str = "") -> ChatRequest:
        """Render *context* as chat messages. Unknown roles are sent as ``user``."""
        roles = {r.value for r in ChatRole}
        messages = [
            ChatMessage(
                role=ChatRole(m["role"]) if m["role"] in roles else ChatRole.USER,
                content=m["content"],
            )
            for m in context.to_messages(system_prompt)
        ]
        return cls(model=model, messages=messages)


class ChatResponse(BaseModel):
    content: str


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def name(self) -> str:
        """Provider name, reported on :class:`~gateway_core.errors.InferenceError`."""

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Run one completion; any exception becomes an inference failure."""


class StubLLMProvider(LLMProvider):
    """Deterministic canned reply, no external calls."""

    _CANNED = "This is a stub response for testing purposes."

    def name(self) -> str:
        return "stub"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        return ChatResponse(content=f"{self._CANNED} (model={request.model})")
