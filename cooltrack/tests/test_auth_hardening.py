def test_missing_authorization_header_401(client):
    r = client.get("/jobs")
    assert r.status_code == 401


def test_wrong_scheme_401(client, auth_headers):
    token = auth_headers()["Authorization"].split(" ", 1)[1]
    r = client.get("/jobs", headers={"Authorization": f"Basic {token}"})
    assert r.status_code == 401


def test_garbled_bearer_token_401(client):
    r = client.get("/jobs", headers={"Authorization": "Bearer not-a-real-token"})
    assert r.status_code == 401


def test_unknown_role_cannot_get_a_token(client):
    r = client.post("/auth/token", json={"user_id": "x", "role": "superuser"})
    assert r.status_code == 400


def test_technician_is_refused_admin_routes(client, auth_headers):
    r = client.patch(
        "/settings",
        json={"default_hourly_rate": 10},
        headers=auth_headers("tech-1", "technician"),
    )
    assert r.status_code == 403


def test_token_endpoint_hidden_outside_dev(client, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    r = client.post("/auth/token", json={"user_id": "admin-1", "role": "admin"})
    assert r.status_code == 404


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
