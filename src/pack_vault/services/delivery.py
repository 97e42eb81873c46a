"""Delivery proxy for purchased pack content.

``DeliveryService.deliver`` runs one request through the gates in order:
authenticate, authorize against the order ledger, admit through the rate
limiter, normalize the content key, issue a capability token, call the
watermark renderer and relay its bytes. A failure at any gate is terminal.
There is no fallback to unwatermarked content.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import httpx

from pack_vault.models import Identity
from pack_vault.services.errors import (
    Forbidden,
    InternalError,
    InvalidRequest,
    PackAccessError,
    RateLimited,
    UpstreamFailure,
    UpstreamTimeout,
)
from pack_vault.services.identity import CredentialVerifier
from pack_vault.services.orders import OrderAccessValidator
from pack_vault.services.rate_limit import RateLimiter
from pack_vault.services.renderer import RenderRequest, WatermarkRendererClient
from pack_vault.services.storage import ObjectStorePresigner
from pack_vault.services.tokens import CapabilityTokenCodec, IntegrityToken, IntegrityTokenCodec
from pack_vault.utils.keys import (
    DEFAULT_CONTENT_PREFIX,
    is_owned_upload,
    is_pack_object,
    normalize_content_key,
)

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "application/octet-stream"
NO_STORE_CACHE_CONTROL = "no-cache, no-store, must-revalidate, private"
HTTP_PARTIAL_CONTENT = 206

# Upstream headers copied onto the relayed response
RELAYED_HEADERS = ("content-length", "content-encoding", "content-range")


def build_relay_headers(upstream: httpx.Headers, *, decoded: bool = False) -> dict[str, str]:
    """Select response headers for watermarked content.

    Every payload is per-buyer, so shared caches must never store it.
    When ``decoded`` is set the body is relayed after transfer decoding,
    so the upstream encoding and length no longer describe it.
    """
    media_type = upstream.get("content-type") or DEFAULT_MEDIA_TYPE
    headers: dict[str, str] = {
        "Content-Type": media_type,
        "Cache-Control": NO_STORE_CACHE_CONTROL,
        "Pragma": "no-cache",
        "Expires": "0",
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
    }
    for name in RELAYED_HEADERS:
        if decoded and name in ("content-length", "content-encoding"):
            continue
        value = upstream.get(name)
        if value:
            headers[name.title()] = value

    media_class = media_type.split("/", 1)[0].lower()
    if media_class in ("video", "audio"):
        headers["Accept-Ranges"] = "bytes"
        headers["Content-Disposition"] = "inline"
    elif media_class == "image":
        headers["Content-Disposition"] = "inline"
    return headers


async def _single_chunk(body: bytes) -> AsyncIterator[bytes]:
    yield body


@dataclass(frozen=True)
class DeliveryRequest:
    """Inputs of one delivery call."""

    authorization: str | None
    pack_id: str
    order_id: str
    content_key: str
    watermark_text: str | None = None
    range_header: str | None = None
    query_token: str | None = None


@dataclass
class DeliveredContent:
    """Renderer output ready to be relayed to the client."""

    status_code: int
    headers: dict[str, str]
    body: AsyncIterator[bytes]
    _response: httpx.Response | None = field(default=None, repr=False)

    @property
    def media_type(self) -> str:
        return self.headers["Content-Type"]

    async def read(self) -> bytes:
        """Consume the whole body."""
        return b"".join([chunk async for chunk in self.body])

    async def aclose(self) -> None:
        if self._response is not None:
            await self._response.aclose()


@dataclass(frozen=True)
class PresignedUrl:
    url: str
    key: str
    expires_in: int


class DeliveryService:
    """Orchestrate gated, watermarked delivery and its sibling operations."""

    def __init__(
        self,
        *,
        verifier: CredentialVerifier,
        validator: OrderAccessValidator,
        limiter: RateLimiter,
        capability_codec: CapabilityTokenCodec,
        integrity_codec: IntegrityTokenCodec,
        renderer: WatermarkRendererClient,
        presigner: ObjectStorePresigner | None = None,
        content_prefix: str = DEFAULT_CONTENT_PREFIX,
        chunk_size: int = 64 * 1024,
        stream: bool = True,
        allow_query_token: bool = False,
        presign_default_ttl: int = 3600,
        presign_min_ttl: int = 60,
        presign_max_ttl: int = 3600,
    ) -> None:
        self.verifier = verifier
        self.validator = validator
        self.limiter = limiter
        self.capability_codec = capability_codec
        self.integrity_codec = integrity_codec
        self.renderer = renderer
        self.presigner = presigner
        self.content_prefix = content_prefix
        self.chunk_size = chunk_size
        self.stream = stream
        self.allow_query_token = allow_query_token
        self.presign_default_ttl = presign_default_ttl
        self.presign_min_ttl = presign_min_ttl
        self.presign_max_ttl = presign_max_ttl

    async def _authenticate(self, authorization: str | None, query_token: str | None = None) -> Identity:
        token = query_token if self.allow_query_token else None
        return await self.verifier.authenticate(authorization, token)

    async def deliver(self, request: DeliveryRequest) -> DeliveredContent:
        """Run the delivery pipeline for one request.

        Raises:
            PackAccessError: A gate rejected the request or the renderer
                failed; unexpected faults surface as ``InternalError``.
        """
        try:
            return await self._deliver(request)
        except (Forbidden, RateLimited) as err:
            logger.info("Pack content denied for pack %s: %s", request.pack_id, err.reason)
            raise
        except UpstreamFailure as err:
            logger.warning(
                "Pack content upstream failure for pack %s: %s", request.pack_id, err.reason
            )
            raise
        except PackAccessError as err:
            logger.info("Pack content rejected for pack %s: %s", request.pack_id, err.reason)
            raise
        except Exception as err:
            logger.error("Pack content delivery failed for pack %s", request.pack_id, exc_info=True)
            raise InternalError() from err

    async def _deliver(self, request: DeliveryRequest) -> DeliveredContent:
        if not (request.pack_id and request.order_id and request.content_key):
            raise InvalidRequest("invalid_request")

        identity = await self._authenticate(request.authorization, request.query_token)

        decision = await self.validator.check_access(identity.id, request.pack_id, request.order_id)
        if not decision.granted or decision.order is None:
            raise Forbidden(decision.reason or "no_valid_order")

        admission = await self.limiter.admit(identity.id, request.pack_id)
        if not admission.allowed:
            raise RateLimited(admission.reason, retry_after=admission.retry_after)

        content_key = normalize_content_key(request.content_key, self.content_prefix)
        username = request.watermark_text or identity.username
        order = decision.order
        capability = self.capability_codec.issue(
            user_id=identity.id,
            username=username,
            pack_id=request.pack_id,
            order_id=order.order_id,
            content_key=content_key,
            vendor_id=order.vendor_id,
            vendor_username=order.vendor_username,
        )

        response = await self.renderer.open_stream(
            RenderRequest(
                content_key=content_key,
                pack_id=request.pack_id,
                order_id=order.order_id,
                username=username,
                capability_token=capability,
                range_header=request.range_header,
            )
        )
        status_code = HTTP_PARTIAL_CONTENT if response.status_code == HTTP_PARTIAL_CONTENT else 200

        if not self.stream:
            content = await self._buffer(response, status_code)
            logger.info(
                "Pack content delivered user %s pack %s type %s",
                identity.id,
                request.pack_id,
                content.media_type,
            )
            return content

        decoded = "content-encoding" in response.headers
        headers = build_relay_headers(response.headers, decoded=decoded)
        logger.debug("Renderer accepted pack %s for user %s", request.pack_id, identity.id)
        return DeliveredContent(
            status_code=status_code,
            headers=headers,
            body=self._relay(response, identity.id, request.pack_id, headers["Content-Type"], decoded),
            _response=response,
        )

    async def _relay(
        self,
        response: httpx.Response,
        user_id: str,
        pack_id: str,
        media_type: str,
        decoded: bool,
    ) -> AsyncIterator[bytes]:
        relayed = 0
        try:
            if response.is_stream_consumed:
                chunks: AsyncIterator[bytes] = _single_chunk(response.content)
            elif decoded:
                chunks = response.aiter_bytes(self.chunk_size)
            else:
                chunks = response.aiter_raw(self.chunk_size)
            async for chunk in chunks:
                relayed += len(chunk)
                yield chunk
        except httpx.HTTPError as err:
            logger.warning("Renderer stream interrupted for pack %s: %s", pack_id, err.__class__.__name__)
            raise
        finally:
            await response.aclose()
        logger.info(
            "Pack content delivered user %s pack %s type %s bytes %d",
            user_id,
            pack_id,
            media_type,
            relayed,
        )

    async def _buffer(self, response: httpx.Response, status_code: int) -> DeliveredContent:
        try:
            body = await asyncio.wait_for(response.aread(), timeout=self.renderer.read_timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as err:
            raise UpstreamTimeout("renderer_timeout") from err
        except httpx.HTTPError as err:
            raise UpstreamFailure("renderer_unavailable") from err
        finally:
            await response.aclose()

        headers = build_relay_headers(response.headers, decoded=True)
        headers["Content-Length"] = str(len(body))
        return DeliveredContent(status_code=status_code, headers=headers, body=_single_chunk(body))

    async def issue_presigned_url(
        self,
        authorization: str | None,
        key: str,
        *,
        expires_in: int | None = None,
        pack_id: str | None = None,
        order_id: str | None = None,
    ) -> PresignedUrl:
        """Return a time-limited direct URL for a non-watermarked asset.

        The caller proves ownership either because the key sits under their
        own upload prefix, or through a granting order for ``pack_id`` when
        the key lives under that order's ``<vendor>/<pack>/`` folder.
        """
        identity = await self._authenticate(authorization)

        if not (key or "").lstrip("/").startswith(self.content_prefix):
            raise InvalidRequest("invalid_content_key")
        normalized = normalize_content_key(key, self.content_prefix)

        if pack_id and not is_owned_upload(normalized, identity.id, self.content_prefix):
            decision = await self.validator.check_access(identity.id, pack_id, order_id)
            if not decision.granted or decision.order is None:
                raise Forbidden(decision.reason or "no_valid_order")
            if not is_pack_object(normalized, decision.order.vendor_id, pack_id, self.content_prefix):
                raise Forbidden("not_owner")
        elif not is_owned_upload(normalized, identity.id, self.content_prefix):
            raise Forbidden("not_owner")

        if self.presigner is None:
            raise UpstreamFailure("storage_unavailable")

        ttl = self.presign_default_ttl if expires_in is None else expires_in
        ttl = max(self.presign_min_ttl, min(ttl, self.presign_max_ttl))
        url = await self.presigner.presign_get(normalized, ttl)
        logger.info("Presigned download issued user %s ttl %s", identity.id, ttl)
        return PresignedUrl(url=url, key=normalized, expires_in=ttl)

    async def issue_integrity_token(
        self,
        authorization: str | None,
        pack_id: str,
        order_id: str,
    ) -> tuple[Identity, IntegrityToken]:
        """Issue an integrity token for an order the caller owns."""
        identity = await self._authenticate(authorization)
        decision = await self.validator.check_access(identity.id, pack_id, order_id)
        if not decision.granted:
            raise Forbidden(decision.reason or "no_valid_order")
        return identity, self.integrity_codec.issue(identity.id, pack_id, order_id)

    def verify_integrity_token(
        self,
        token: str,
        user_id: str,
        pack_id: str,
        order_id: str,
        expires_at: int,
    ) -> None:
        """Raise ``Forbidden`` unless ``token`` matches the inputs and has not lapsed."""
        if not self.integrity_codec.verify(token, user_id, pack_id, order_id, expires_at):
            raise Forbidden("invalid_integrity_token")

    async def close(self) -> None:
        await self.renderer.close()
