"""
HTTP API tests through httpx over the WSGI app.

SCENARIO style: each test drives the blueprints the way a client would and
checks status codes plus the JSON error contract {"error", "type"}.
"""

import pytest


def _register(http, **overrides):
    payload = {
        "serial_number": overrides.pop("serial_number", None) or f"API-{overrides.pop('n', 1)}",
        "capacity": "22kg",
        "manufacturing_date": "2021-02-01",
        "last_hydrostatic_test": "2024-02-01",
    }
    payload.update(overrides)
    response = http.post("/api/cylinders", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["cylinder"]


def test_health(http, tank):
    response = http.get("/api/health")

    assert response.status_code == 200
    assert response.json()["checks"]["database"]["details"]["tank_configured"] is True


def test_register_and_list_cylinders(http):
    created = _register(http, serial_number="API-REG")

    assert created["next_test_due"] == "2029-02-01"
    listed = http.get("/api/cylinders", params={"location": "dispatch"}).json()["cylinders"]
    assert [c["serial_number"] for c in listed] == ["API-REG"]


def test_validation_error_contract(http):
    response = http.post("/api/cylinders", json={"serial_number": "X"})

    assert response.status_code == 400
    body = response.json()
    assert body["type"] == "ValidationError"
    assert "Missing required fields" in body["error"]


def test_edit_requires_comment_over_http(http):
    cylinder = _register(http, serial_number="API-EDIT")

    response = http.patch(
        f"/api/cylinders/{cylinder['id']}",
        json={"changes": {"valve_type": "CGA-320"}, "comments": "", "performed_by": "ana"},
    )
    assert response.status_code == 400

    response = http.patch(
        f"/api/cylinders/{cylinder['id']}",
        json={"changes": {"valve_type": "CGA-320"}, "comments": "new valve", "performed_by": "ana"},
    )
    assert response.status_code == 200
    logs = http.get("/api/audit-logs", params={"kind": "cylinder", "record_id": cylinder["id"]}).json()["logs"]
    assert [log["action"] for log in logs] == ["edit"]


def test_tank_scenarios_a_and_b(http, tank):
    response = http.post("/api/tank/entrances", json={"quantity": 100, "operator_name": "op", "supplier": "Linde"})
    assert response.status_code == 201
    assert response.json()["tank"]["level"] == 603.0

    response = http.post("/api/tank/exits", json={"quantity": 600, "operator_name": "op"})
    assert response.status_code == 409
    assert response.json()["type"] == "InsufficientInventoryError"
    assert http.get("/api/tank").json()["level"] == 603.0


def test_filling_batch_and_approval_gate(http, tank):
    ids = [_register(http, serial_number=f"API-F{i}", current_location="filling_station")["id"] for i in range(3)]
    items = [{"cylinder_id": cid, "weight_filled": w} for cid, w in zip(ids, [10, 12, 8])]

    response = http.post("/api/fillings", json={
        "items": items, "operator_name": "op", "is_approved": False, "approved_by": "sup",
    })
    assert response.status_code == 400
    assert response.json()["type"] == "ApprovalRequiredError"
    assert http.get("/api/fillings").json()["fillings"] == []

    response = http.post("/api/fillings", json={
        "items": items, "operator_name": "op", "is_approved": True, "approved_by": "sup", "batch_number": "B-API",
    })
    assert response.status_code == 201
    body = response.json()
    assert body["count"] == 3
    assert body["total_shrinkage"] == pytest.approx(0.3)

    full = http.get("/api/cylinders", params={"status": "full"}).json()["cylinders"]
    assert sorted(c["id"] for c in full) == sorted(ids)

    response = http.post("/api/fillings/batches/B-API/approval", json={"is_approved": False, "approved_by": "mgr"})
    assert response.status_code == 200
    assert all(f["is_approved"] is False for f in response.json()["fillings"])


def test_transfer_and_reversal_scenarios_e_and_f(http):
    cylinder = _register(http, serial_number="API-T", current_status="full")

    response = http.post("/api/transfers", json={
        "cylinder_ids": [cylinder["id"]],
        "from_location": "dispatch",
        "to_location": "filling_station",
        "operator_name": "op",
        "transfer_number": "T-API",
    })
    assert response.status_code == 201
    transfer = response.json()["transfers"][0]

    moved = http.get(f"/api/cylinders/{cylinder['id']}").json()["cylinder"]
    assert (moved["current_location"], moved["current_status"]) == ("filling_station", "empty")

    response = http.post(f"/api/reversals/transfer/{transfer['id']}", json={"reversed_by": "sup"})
    assert response.status_code == 200
    restored = http.get(f"/api/cylinders/{cylinder['id']}").json()["cylinder"]
    assert (restored["current_location"], restored["current_status"]) == ("dispatch", "full")

    response = http.post(f"/api/reversals/transfer/{transfer['id']}", json={"reversed_by": "sup"})
    assert response.status_code == 409
    assert response.json()["type"] == "AlreadyReversedError"


def test_stale_transfer_returns_409(http):
    cylinder = _register(http, serial_number="API-S", current_location="routes")

    response = http.post("/api/transfers", json={
        "cylinder_ids": [cylinder["id"]],
        "from_location": "dispatch",
        "to_location": "routes",
        "operator_name": "op",
    })
    assert response.status_code == 409
    assert response.json()["type"] == "StaleSelectionError"


def test_open_batches_and_trip_close(http):
    ids = [_register(http, serial_number=f"API-O{i}", current_status="full")["id"] for i in range(2)]
    http.post("/api/transfers", json={
        "cylinder_ids": ids, "from_location": "dispatch", "to_location": "routes",
        "operator_name": "op", "nota_envio_number": "NE-API",
    })

    batches = http.get("/api/transfers/open-batches", params={"location": "routes"}).json()["batches"]
    assert batches[0]["reference_number"] == "NE-API"

    response = http.post("/api/transfers/trips/NE-API/close", json={"closed_by": "driver"})
    assert response.json()["closed"] == 2
    assert http.get("/api/transfers/open-batches", params={"location": "routes"}).json()["batches"] == []


def test_adjustments_endpoint(http):
    cylinder = _register(http, serial_number="API-ADJ")

    response = http.post("/api/adjustments", json={
        "location": "dispatch",
        "cylinder_ids": [cylinder["id"]],
        "adjustment_type": "status_change",
        "reason": "Found full",
        "performed_by": "auditor",
        "new_status": "full",
    })
    assert response.status_code == 201
    assert http.get("/api/adjustments").json()["adjustments"][0]["new_status"] == "full"


def test_records_endpoints(http, tank):
    cylinder = _register(http, serial_number="API-REC", current_location="filling_station")
    filling = http.post("/api/fillings", json={
        "items": [{"cylinder_id": cylinder["id"], "weight_filled": 9}],
        "operator_name": "op", "is_approved": True, "approved_by": "sup",
    }).json()["fillings"][0]

    assert http.get(f"/api/records/filling/{filling['id']}").json()["record"]["weight_filled"] == 9.0
    response = http.post(f"/api/records/filling/{filling['id']}/reject", json={"performed_by": "mgr"})
    assert response.json()["record"]["is_approved"] is False

    response = http.request("DELETE", f"/api/records/filling/{filling['id']}",
                            json={"performed_by": "mgr", "comments": "x"})
    assert response.status_code == 400

    assert http.get("/api/records/nonsense/1").status_code == 400
    assert http.get("/api/records/cylinder/9999").status_code == 404


def test_reports(http, tank):
    _register(http, serial_number="API-REP")

    summary = http.get("/api/reports/summary").json()
    assert summary["inventory"]["total_active"] == 1
    assert summary["tank"]["configured"] is True

    assert http.get("/api/reports/test-due", params={"days": 30}).json()["count"] == 0
    assert http.get("/api/reports/shrinkage").json()["total_shrinkage"] == 0.0
    assert http.get("/api/reports/customers").json()["customers"] == []


def test_filling_accepts_string_cylinder_id(http, tank):
    cylinder = _register(http, serial_number="API-STR", current_location="filling_station")

    response = http.post("/api/fillings", json={
        "items": [{"cylinder_id": str(cylinder["id"]), "weight_filled": 10}],
        "operator_name": "op", "is_approved": True, "approved_by": "sup",
    })

    assert response.status_code == 201
    assert response.json()["fillings"][0]["cylinder_id"] == cylinder["id"]


def test_malformed_filling_item_is_a_validation_error(http, tank):
    response = http.post("/api/fillings", json={
        "items": [7], "operator_name": "op", "is_approved": True, "approved_by": "sup",
    })

    assert response.status_code == 400
    assert response.json()["type"] == "ValidationError"
