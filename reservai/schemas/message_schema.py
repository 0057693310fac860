"""Inbound message, classifier result and outbound reply models."""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class InboundMessage(BaseModel):
    """A single customer message as delivered by the transport layer."""

    conversation_id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    display_name: Optional[str] = None

    @field_validator("conversation_id", "text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("display_name")
    @classmethod
    def _blank_name_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class ClassificationResult(BaseModel):
    """Output of the external intent classifier for one message."""

    intent_label: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    fulfillment_text: Optional[str] = None

    def get_string(self, name: str) -> Optional[str]:
        """Return a non-empty string parameter, or None."""
        value = self.parameters.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None


class Reply(BaseModel):
    """Text sent back to the customer."""

    text: str
