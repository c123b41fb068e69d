"""Pydantic models for the model conversation."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    """A single message exchanged with the model."""

    role: Role
    content: str


class Conversation(BaseModel):
    """
    The accumulating transcript for one parse operation.

    Created per call, seeded with the system prompt, and threaded explicitly
    through every generation so concurrent calls never share state.
    """

    messages: list[ChatMessage] = Field(default_factory=list)

    @classmethod
    def seeded(cls, system_prompt: str) -> Conversation:
        return cls(messages=[ChatMessage(role="system", content=system_prompt)])

    def add_user(self, content: str) -> None:
        self.messages.append(ChatMessage(role="user", content=content))

    def add_assistant(self, content: str) -> None:
        self.messages.append(ChatMessage(role="assistant", content=content))

    def discard_last(self) -> ChatMessage:
        """Remove and return the most recent message."""
        return self.messages.pop()

    def as_messages(self) -> list[dict[str, str]]:
        """Return the transcript in the chat-completions wire shape."""
        return [message.model_dump() for message in self.messages]

    @property
    def exchange_count(self) -> int:
        return sum(1 for message in self.messages if message.role == "assistant")
