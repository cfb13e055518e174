"""Pydantic v2 schemas for alert recipient filtering."""

from pydantic import BaseModel, Field


class AlertRecipientsRequest(BaseModel):
    """Users the bot wants to send the next alert to."""

    user_ids: list[str] = Field(min_length=1, max_length=5000)


class AlertRecipientsResponse(BaseModel):
    """Users cleared to receive the alert, in request order."""

    recipients: list[str]
    unknown: list[str]
