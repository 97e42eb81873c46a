"""Request and response schemas for pack content endpoints."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Structured error payload returned by every failing request."""

    error: str = Field(..., description="Stable machine-readable reason.")


class PresignRequest(BaseModel):
    """Ask for a time-limited direct download URL."""

    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(..., min_length=1, description="Object key under the pack-content prefix.")
    expires_in: int | None = Field(default=None, alias="expiresIn", gt=0)
    pack_id: str | None = Field(default=None, alias="packId")
    order_id: str | None = Field(default=None, alias="orderId")


class PresignResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    download_url: str = Field(..., alias="downloadUrl")
    key: str
    expires_in: int = Field(..., alias="expiresIn")


class IntegrityTokenRequest(BaseModel):
    """Order for which an integrity token is requested."""

    model_config = ConfigDict(populate_by_name=True)

    pack_id: str = Field(..., alias="packId", min_length=1)
    order_id: str = Field(..., alias="orderId", min_length=1)


class IntegrityTokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    user_id: str = Field(..., alias="userId")
    pack_id: str = Field(..., alias="packId")
    order_id: str = Field(..., alias="orderId")
    expires_at: int = Field(..., alias="expiresAt")


class VerifyResponse(BaseModel):
    valid: bool
