"""Pack content delivery endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Header, Query
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from pack_vault.api.v1.dependencies import AuthorizationHeader, DeliveryServiceDep
from pack_vault.schemas import (
    ErrorResponse,
    IntegrityTokenRequest,
    IntegrityTokenResponse,
    PresignRequest,
    PresignResponse,
    VerifyResponse,
)
from pack_vault.services.delivery import DeliveryRequest

router = APIRouter(prefix="/pack-content", tags=["pack-content"])

ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


@router.get("/stream", responses=ERROR_RESPONSES, response_class=StreamingResponse)
async def stream_pack_content(
    service: DeliveryServiceDep,
    pack_id: Annotated[str, Query(alias="packId", min_length=1)],
    order_id: Annotated[str, Query(alias="orderId", min_length=1)],
    content_key: Annotated[str, Query(alias="contentKey", min_length=1)],
    authorization: AuthorizationHeader = None,
    username: Annotated[str | None, Query(description="Watermark text override.")] = None,
    token: Annotated[str | None, Query(description="Identity token when headers are unavailable.")] = None,
    range_header: Annotated[str | None, Header(alias="range")] = None,
) -> StreamingResponse:
    """Relay watermarked content for a purchased pack.

    The body is streamed from the watermark renderer as it arrives; the
    response is never cacheable by shared caches.
    """
    content = await service.deliver(
        DeliveryRequest(
            authorization=authorization,
            pack_id=pack_id,
            order_id=order_id,
            content_key=content_key,
            watermark_text=username,
            range_header=range_header,
            query_token=token,
        )
    )
    return StreamingResponse(
        content.body,
        status_code=content.status_code,
        headers=content.headers,
        background=BackgroundTask(content.aclose),
    )


@router.post("/download", response_model=PresignResponse, responses=ERROR_RESPONSES)
async def issue_download_url(
    body: PresignRequest,
    service: DeliveryServiceDep,
    authorization: AuthorizationHeader = None,
) -> PresignResponse:
    """Return a short-lived direct URL for a non-watermarked asset."""
    presigned = await service.issue_presigned_url(
        authorization,
        body.key,
        expires_in=body.expires_in,
        pack_id=body.pack_id,
        order_id=body.order_id,
    )
    return PresignResponse(
        download_url=presigned.url,
        key=presigned.key,
        expires_in=presigned.expires_in,
    )


@router.post("/integrity-token", response_model=IntegrityTokenResponse, responses=ERROR_RESPONSES)
async def issue_integrity_token(
    body: IntegrityTokenRequest,
    service: DeliveryServiceDep,
    authorization: AuthorizationHeader = None,
) -> IntegrityTokenResponse:
    identity, issued = await service.issue_integrity_token(authorization, body.pack_id, body.order_id)
    return IntegrityTokenResponse(
        token=issued.token,
        user_id=identity.id,
        pack_id=body.pack_id,
        order_id=body.order_id,
        expires_at=issued.expires_at,
    )


@router.get("/verify", response_model=VerifyResponse, responses=ERROR_RESPONSES)
async def verify_integrity_token(
    service: DeliveryServiceDep,
    user_id: Annotated[str, Query(alias="userId", min_length=1)],
    pack_id: Annotated[str, Query(alias="packId", min_length=1)],
    order_id: Annotated[str, Query(alias="orderId", min_length=1)],
    expires: Annotated[int, Query()],
    token: Annotated[str, Query(min_length=1)],
) -> VerifyResponse:
    """Check an integrity token without any session state."""
    service.verify_integrity_token(token, user_id, pack_id, order_id, expires)
    return VerifyResponse(valid=True)
