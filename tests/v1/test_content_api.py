"""HTTP tests for the pack content endpoints."""

from fastapi import status

from conftest import bearer, make_order
from pack_vault.services.rate_limit import RateLimiter, RateLimits

STREAM_PARAMS = {"packId": "P1", "orderId": "O1", "contentKey": "cover.webp"}


class TestStreamEndpoint:
    def test_streams_watermarked_content(self, client, auth_headers, renderer_stub):
        response = client.get("/api/v1/pack-content/stream", params=STREAM_PARAMS, headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.content == b"watermarked-bytes"
        assert response.headers["content-type"] == "image/webp"
        assert "no-store" in response.headers["cache-control"]
        assert response.headers["x-content-type-options"] == "nosniff"
        assert renderer_stub.last_params["contentKey"] == "pack-content/cover.webp"

    def test_video_is_seekable(self, client, auth_headers, renderer_stub):
        renderer_stub.headers = {"Content-Type": "video/mp4"}

        response = client.get("/api/v1/pack-content/stream", params=STREAM_PARAMS, headers=auth_headers)

        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["content-disposition"] == "inline"

    def test_range_header_forwarded(self, client, auth_headers, renderer_stub):
        renderer_stub.status_code = 206
        renderer_stub.headers = {"Content-Type": "audio/mpeg", "Content-Range": "bytes 0-3/17"}
        renderer_stub.content = b"wate"

        response = client.get(
            "/api/v1/pack-content/stream",
            params=STREAM_PARAMS,
            headers={**auth_headers, "Range": "bytes=0-3"},
        )

        assert response.status_code == status.HTTP_206_PARTIAL_CONTENT
        assert response.headers["content-range"] == "bytes 0-3/17"
        assert renderer_stub.requests[0].headers["range"] == "bytes=0-3"

    def test_watermark_override(self, client, auth_headers, renderer_stub):
        client.get(
            "/api/v1/pack-content/stream",
            params={**STREAM_PARAMS, "username": "Collector"},
            headers=auth_headers,
        )

        assert renderer_stub.last_params["username"] == "Collector"

    def test_missing_authorization(self, client):
        response = client.get("/api/v1/pack-content/stream", params=STREAM_PARAMS)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "missing_credentials"}

    def test_invalid_token(self, client):
        response = client.get(
            "/api/v1/pack-content/stream",
            params=STREAM_PARAMS,
            headers={"Authorization": "Bearer not.a.jwt"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "invalid_credentials"}

    def test_no_purchase(self, client):
        response = client.get("/api/v1/pack-content/stream", params=STREAM_PARAMS, headers=bearer("U2"))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == {"error": "no_valid_order"}

    def test_pending_order(self, client, ledger):
        ledger.add(make_order("O2", buyer_id="U3", status="PENDING"))

        response = client.get(
            "/api/v1/pack-content/stream",
            params={**STREAM_PARAMS, "orderId": "O2"},
            headers=bearer("U3"),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_rate_limited_with_retry_after(self, client, auth_headers, delivery_service, clock):
        delivery_service.limiter = RateLimiter(limits=RateLimits(per_minute=1, per_hour=10), clock=clock)
        client.get("/api/v1/pack-content/stream", params=STREAM_PARAMS, headers=auth_headers)

        response = client.get("/api/v1/pack-content/stream", params=STREAM_PARAMS, headers=auth_headers)

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json() == {"error": "rate_limit_minute"}
        assert response.headers["retry-after"] == "60"

    def test_renderer_failure_returns_no_bytes(self, client, auth_headers, renderer_stub):
        renderer_stub.status_code = 500
        renderer_stub.content = b"original-unwatermarked-bytes"

        response = client.get("/api/v1/pack-content/stream", params=STREAM_PARAMS, headers=auth_headers)

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.json() == {"error": "renderer_error"}
        assert b"original" not in response.content
        assert "renderer.test" not in response.text

    def test_renderer_not_found_is_propagated(self, client, auth_headers, renderer_stub):
        renderer_stub.status_code = 404

        response = client.get("/api/v1/pack-content/stream", params=STREAM_PARAMS, headers=auth_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"error": "content_not_found"}

    def test_missing_query_field(self, client, auth_headers):
        response = client.get(
            "/api/v1/pack-content/stream",
            params={"packId": "P1", "orderId": "O1"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "invalid_request"}


class TestDownloadEndpoint:
    def test_presigned_url_for_own_upload(self, client, auth_headers):
        response = client.post(
            "/api/v1/pack-content/download",
            json={"key": "pack-content/U1/preview.png", "expiresIn": 600},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["key"] == "pack-content/U1/preview.png"
        assert body["expiresIn"] == 600
        assert body["downloadUrl"].startswith("https://storage.test/")

    def test_foreign_key_forbidden(self, client, auth_headers):
        response = client.post(
            "/api/v1/pack-content/download",
            json={"key": "pack-content/U2/preview.png"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == {"error": "not_owner"}

    def test_other_pack_key_forbidden_with_valid_order(self, client, auth_headers, presigner):
        response = client.post(
            "/api/v1/pack-content/download",
            json={"key": "pack-content/V9/P99/premium.mp4", "packId": "P1", "orderId": "O1"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == {"error": "not_owner"}
        presigner.presign_get.assert_not_awaited()

    def test_key_outside_prefix(self, client, auth_headers):
        response = client.post(
            "/api/v1/pack-content/download",
            json={"key": "avatars/U1.png"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "invalid_content_key"}

    def test_missing_key(self, client, auth_headers):
        response = client.post("/api/v1/pack-content/download", json={}, headers=auth_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestIntegrityEndpoints:
    def test_issue_then_verify(self, client, auth_headers):
        issued = client.post(
            "/api/v1/pack-content/integrity-token",
            json={"packId": "P1", "orderId": "O1"},
            headers=auth_headers,
        )
        assert issued.status_code == status.HTTP_200_OK
        body = issued.json()
        assert body["userId"] == "U1"
        assert len(body["token"]) == 64

        verified = client.get(
            "/api/v1/pack-content/verify",
            params={
                "userId": "U1",
                "packId": "P1",
                "orderId": "O1",
                "expires": body["expiresAt"],
                "token": body["token"],
            },
        )

        assert verified.status_code == status.HTTP_200_OK
        assert verified.json() == {"valid": True}

    def test_verify_rejects_forged_token(self, client):
        response = client.get(
            "/api/v1/pack-content/verify",
            params={
                "userId": "U1",
                "packId": "P1",
                "orderId": "O1",
                "expires": 2_000_000_000,
                "token": "0" * 64,
            },
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == {"error": "invalid_integrity_token"}

    def test_issue_without_order(self, client):
        response = client.post(
            "/api/v1/pack-content/integrity-token",
            json={"packId": "P1", "orderId": "O1"},
            headers=bearer("U9"),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
