import base64
from decimal import Decimal


def _customer(client, headers):
    r = client.post(
        "/customers",
        headers=headers,
        json={"name": "Lopez Farms", "email": "ops@lopez.example", "phone": "555-0142", "address": "Route 9"},
    )
    assert r.status_code == 201, r.text
    return r.json()


def _job(client, headers, customer_id, **extra):
    body = {"customer_id": customer_id, "type": "repair", "assigned_to": "tech-1"}
    body.update(extra)
    r = client.post("/jobs", headers=headers, json=body)
    assert r.status_code == 201, r.text
    return r.json()


def test_job_lifecycle_over_http(client, auth_headers):
    admin = auth_headers()
    tech = auth_headers("tech-1", "technician")

    client.patch("/settings", headers=admin, json={"default_hourly_rate": 50})
    client.post(
        "/inventory/grouped/stock",
        headers=admin,
        json={"item_name": "Bracket", "unit": "pcs", "quantity": 20, "purchase_price": 10},
    )
    customer = _customer(client, admin)
    job = _job(client, admin, customer["id"], total_revenue=1000)
    assert job["job_number"].endswith("-00001")
    assert job["customer_name"] == "Lopez Farms"

    r = client.post(
        f"/jobs/{job['id']}/materials",
        headers=tech,
        json={"materials": [{"inventory_type": "grouped", "item_name": "Bracket", "quantity": 20}]},
    )
    assert r.status_code == 200, r.text
    assert Decimal(r.json()["total_material_cost"]) == Decimal("200")

    r = client.put(f"/jobs/{job['id']}/labor", headers=tech, json={"hours": 5})
    assert r.status_code == 200, r.text
    body = r.json()
    assert Decimal(body["labor_cost"]) == Decimal("250")
    assert Decimal(body["profit"]) == Decimal("550")

    r = client.post(f"/jobs/{job['id']}/status", headers=tech, json={"status": "in_progress"})
    assert r.status_code == 200
    assert r.json()["started_at"] is not None

    r = client.post(f"/jobs/{job['id']}/status", headers=tech, json={"status": "completed"})
    assert r.status_code == 422
    assert r.json()["error"] == "policy_violation"

    r = client.post(f"/jobs/{job['id']}/approve-costing", headers=tech, json={})
    assert r.status_code == 403

    r = client.post(f"/jobs/{job['id']}/approve-costing", headers=admin, json={"notes": "ok"})
    assert r.status_code == 200
    assert r.json()["costing_approval"]["is_approved"] is True

    r = client.post(f"/jobs/{job['id']}/status", headers=tech, json={"status": "completed"})
    assert r.status_code == 200

    r = client.put(f"/jobs/{job['id']}/revenue", headers=admin, json={"base_revenue": 1200})
    assert r.status_code == 409

    r = client.post(f"/jobs/{job['id']}/status", headers=admin, json={"status": "paid"})
    assert r.status_code == 200

    r = client.get(f"/customers/{customer['id']}", headers=admin)
    assert r.json()["total_jobs"] == 1
    assert Decimal(r.json()["total_revenue"]) == Decimal("1000")


def test_cost_breakdown_endpoint(client, auth_headers):
    admin = auth_headers()
    customer = _customer(client, admin)
    job = _job(client, admin, customer["id"], total_revenue=400)
    client.post(f"/jobs/{job['id']}/additional-costs", headers=admin, json={"description": "Ladder rental", "amount": 35})

    r = client.get(f"/jobs/{job['id']}/costs", headers=admin)
    assert r.status_code == 200, r.text
    body = r.json()
    assert Decimal(body["total_additional_cost"]) == Decimal("35")
    assert Decimal(body["profit"]) == Decimal("365")


def test_technician_sees_only_assigned_jobs(client, auth_headers):
    admin = auth_headers()
    customer = _customer(client, admin)
    mine = _job(client, admin, customer["id"])
    _job(client, admin, customer["id"], assigned_to="tech-2")

    r = client.get("/jobs", headers=auth_headers("tech-1", "technician"))
    assert [j["id"] for j in r.json()] == [mine["id"]]

    r = client.post("/jobs", headers=auth_headers("tech-1", "technician"), json={"customer_id": customer["id"], "type": "repair"})
    assert r.status_code == 403


def test_attach_files(client, auth_headers):
    admin = auth_headers()
    customer = _customer(client, admin)
    job = _job(client, admin, customer["id"])

    r = client.post(
        f"/jobs/{job['id']}/files",
        headers=auth_headers("tech-1", "technician"),
        json={
            "files": [
                {
                    "kind": "photo",
                    "filename": "before.jpg",
                    "content_type": "image/jpeg",
                    "content_base64": base64.b64encode(b"\xff\xd8fake").decode(),
                }
            ]
        },
    )
    assert r.status_code == 200, r.text
    [url] = r.json()["photos"]
    assert url.startswith(f"/uploads/jobs/{job['id']}/photos/")
    assert url.endswith("_before.jpg")

    r = client.get(f"/jobs/{job['id']}", headers=admin)
    assert r.json()["photo_urls"] == [url]


def test_attach_files_rejects_bad_base64(client, auth_headers):
    admin = auth_headers()
    customer = _customer(client, admin)
    job = _job(client, admin, customer["id"])

    r = client.post(
        f"/jobs/{job['id']}/files",
        headers=admin,
        json={"files": [{"kind": "document", "filename": "a.pdf", "content_base64": "!!not base64!!"}]},
    )
    assert r.status_code == 400
