from chatsync.version import VERSION


def test_health_does_not_need_auth(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["version"] == VERSION


def test_heartbeat(client):
    assert client.get("/api/heartbeat").json() == {"status": "ok"}
