def test_health_endpoint(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"] == {"status": "ok"}


def test_api_health_endpoint_alias(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"] == {"status": "ok"}


def test_every_response_carries_trace_and_request_ids(client):
    resp = client.get("/api/v1/health", headers={"x-trace-id": "trace_abc", "x-request-id": "req_abc"})
    assert resp.headers["x-trace-id"] == "trace_abc"
    assert resp.headers["x-request-id"] == "req_abc"
    assert resp.json()["meta"]["trace_id"] == "trace_abc"

    missing = client.get("/api/v1/nope")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "REQ_NOT_FOUND"
    assert missing.headers["x-trace-id"]
    assert missing.headers["x-request-id"].startswith("req_")
