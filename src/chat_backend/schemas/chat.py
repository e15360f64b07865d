"""Pydantic models for chat turn requests."""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..chat.parameters import normalize_model_params
from ..providers.types import GenerationParams


class ChatMessage(BaseModel):
    """A UI message: role plus ordered typed parts."""

    id: str = Field(default_factory=lambda: f"msg_{uuid.uuid4().hex}")
    role: Literal["system", "user", "assistant"]
    parts: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class AdvancedOptions(BaseModel):
    top_k: Optional[int] = Field(default=None, alias="topK")
    presence_penalty: Optional[float] = Field(default=None, alias="presencePenalty")
    frequency_penalty: Optional[float] = Field(default=None, alias="frequencyPenalty")
    tool_choice: Optional[Union[str, Dict[str, Any]]] = Field(
        default=None, alias="toolChoice"
    )

    model_config = ConfigDict(populate_by_name=True)


class ChatTurnRequest(BaseModel):
    """Incoming chat turn payload."""

    chat_id: Optional[str] = Field(default=None, alias="chatId")
    message: Optional[ChatMessage] = None
    messages: Optional[List[ChatMessage]] = None
    model_id: Optional[str] = Field(default=None, alias="modelId")

    # Generation overrides
    system: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = Field(default=None, alias="topP")
    max_output_tokens: Optional[int] = Field(default=None, alias="maxOutputTokens")
    seed: Optional[int] = None
    stop_sequences: Optional[Union[str, List[str]]] = Field(
        default=None, alias="stopSequences"
    )
    advanced: Optional[AdvancedOptions] = None

    # Tool flags
    enable_web_search: bool = Field(default=False, alias="enableWebSearch")
    enable_image: bool = Field(default=False, alias="enableImage")

    model_config = ConfigDict(
        populate_by_name=True, extra="ignore", protected_namespaces=()
    )

    def generation_overrides(self) -> GenerationParams:
        """Return request overrides read through the same alias table as stored params."""

        raw: dict[str, Any] = {
            "temperature": self.temperature,
            "topP": self.top_p,
            "maxOutputTokens": self.max_output_tokens,
            "seed": self.seed,
            "stopSequences": self.stop_sequences,
            "systemPrompt": self.system,
        }
        if self.advanced is not None:
            raw.update(
                {
                    "topK": self.advanced.top_k,
                    "presencePenalty": self.advanced.presence_penalty,
                    "frequencyPenalty": self.advanced.frequency_penalty,
                    "toolChoice": self.advanced.tool_choice,
                }
            )
        return normalize_model_params(raw)

    def message_record(self) -> dict[str, Any] | None:
        return self.message.to_record() if self.message is not None else None

    def message_records(self) -> list[dict[str, Any]] | None:
        if self.messages is None:
            return None
        return [message.to_record() for message in self.messages]


__all__ = ["AdvancedOptions", "ChatMessage", "ChatTurnRequest"]
