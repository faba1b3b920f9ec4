"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LostDeviceRequest(BaseModel):
    """Request model for asking a recovery token by email."""

    email: EmailStr


class RecoveryOptionsRequest(BaseModel):
    """Request model for attestation options with a recovery token."""

    email: EmailStr
    token: str = Field(..., min_length=1, max_length=128, description="Recovery token from email")


class RecoverRequest(BaseModel):
    """Request model for completing recovery with a new device."""

    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    token: str = Field(..., min_length=1, max_length=128, description="Recovery token from email")
    attestation_response: dict[str, Any] = Field(
        ...,
        alias="attestationResponse",
        description="JSON-serialized result of navigator.credentials.create()",
    )
    unique: bool = Field(
        default=False,
        description="Disable every other device on the account",
    )


class MessageResponse(BaseModel):
    """Response model carrying a human readable message."""

    message: str


class RecoverResponse(BaseModel):
    """Response model for successful recovery."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    redirect_to: str = Field(..., serialization_alias="redirectTo")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str
