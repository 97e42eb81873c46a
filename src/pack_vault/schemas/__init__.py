"""Pydantic schemas for the pack content API."""

from .content import (
    ErrorResponse,
    IntegrityTokenRequest,
    IntegrityTokenResponse,
    PresignRequest,
    PresignResponse,
    VerifyResponse,
)

__all__ = [
    "ErrorResponse",
    "IntegrityTokenRequest",
    "IntegrityTokenResponse",
    "PresignRequest",
    "PresignResponse",
    "VerifyResponse",
]
