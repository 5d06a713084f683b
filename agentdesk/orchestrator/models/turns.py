"""Outbound turn models -- what the orchestrator sends to the agent service.

A turn is plain text when the user attached nothing, otherwise a list of
content parts: leading text, one image part per readable image attachment,
and a trailing text part listing the remaining attachments by path.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageSource(BaseModel):
    type: Literal["base64"] = "base64"
    media_type: str
    data: str


class ImageContent(BaseModel):
    type: Literal["image"] = "image"
    source: ImageSource


TurnContent = Annotated[TextContent | ImageContent, Field(discriminator="type")]


class OutboundTurn(BaseModel):
    """One user turn in a batch."""

    content: str | list[TurnContent]
    session_id: str | None = None
    """External session id known when the turn was produced."""

    @property
    def is_structured(self) -> bool:
        return not isinstance(self.content, str)
