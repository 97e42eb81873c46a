"""HTTP tests for system endpoints."""


def test_renderer_status_snapshot(client, auth_headers):
    client.get(
        "/api/v1/pack-content/stream",
        params={"packId": "P1", "orderId": "O1", "contentKey": "cover.webp"},
        headers=auth_headers,
    )

    response = client.get("/api/v1/system/renderer")

    assert response.status_code == 200
    body = response.json()
    assert body["enabled"] is True
    assert body["circuit_breaker"]["state"] == "closed"
    assert body["metrics"]["request_count"] == 1
    assert "renderer.test" not in response.text


def test_open_breaker_is_reported(client, auth_headers, renderer_stub):
    renderer_stub.status_code = 503
    for _ in range(3):
        client.get(
            "/api/v1/pack-content/stream",
            params={"packId": "P1", "orderId": "O1", "contentKey": "cover.webp"},
            headers=auth_headers,
        )

    body = client.get("/api/v1/system/renderer").json()

    assert body["circuit_breaker"]["is_open"] is True
    assert body["metrics"]["error_counts_by_type"] == {"http_503": 3}
