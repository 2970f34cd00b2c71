"""Pydantic request/response schemas for the API.

Defines the public contracts used by the FastAPI endpoints:
- AskRequest: question payload for the streaming ask endpoints.
- EnableResponse / DisableResponse: toggle outcomes as a plain boolean.
- ChatExchangeIn / ChatExchangeOut: persisted question/answer pairs.
- ClassifyRequest / ClassifyResponse: intent classification.
- StreamEventType: WebSocket server event names.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AskRequest(BaseModel):
    """Raw question payload sent by a reader.

    Attributes:
        question: The question about the post.
    """
    question: str = Field(..., description="Reader question")


class EnableResponse(BaseModel):
    enabled: bool


class DisableResponse(BaseModel):
    disabled: bool


class ChatExchangeIn(BaseModel):
    """A finished exchange submitted by a client that streamed it itself."""
    prompt: str = Field(default="", description="The question asked")
    response: str = Field(default="", description="The full generated answer")


class ChatExchangeOut(BaseModel):
    id: Optional[int] = None
    post_id: str
    user_id: str
    prompt: str
    response: str
    created_at: Optional[datetime] = None


class ClassifyRequest(BaseModel):
    message: str = ""


class ClassifyResponse(BaseModel):
    intent: str


class StreamEventType(str, Enum):
    """Server-to-client event types for WebSocket chat."""
    FRAGMENT = "fragment"
    ERROR = "error"
    DONE = "done"
