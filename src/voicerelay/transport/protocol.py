"""Client message protocol definitions.

Binary frames carry raw audio in both directions. Text frames carry
JSON-encoded values: the assistant reply as a bare JSON string, plus the
envelopes defined here.
"""

from typing import Any

from pydantic import BaseModel, Field


class MetadataMessage(BaseModel):
    """Server → Client: ASR stream metadata, forwarded as received."""

    metadata: dict[str, Any] = Field(..., description="Backend metadata object")


class ErrorDetail(BaseModel):
    """Error payload carried by ErrorMessage."""

    code: str = Field(default="INTERNAL_ERROR", description="Error code")
    message: str = Field(..., description="Error description")


class ErrorMessage(BaseModel):
    """Server → Client: Session-ending error notification.

    Sent before the server closes a session it cannot recover.
    """

    error: ErrorDetail
