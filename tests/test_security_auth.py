from __future__ import annotations

from fulfillment.core.config import Settings


def _order_body(product_id: str) -> dict:
    return {
        "customer_ref": "cust-auth",
        "line_items": [{"product_id": product_id, "quantity": 1, "unit_price": "1.00"}],
    }


def test_mutations_require_a_known_api_key(client, auth_headers, make_product):
    product = make_product()

    missing = client.post("/orders", json=_order_body(product))
    assert missing.status_code == 401

    wrong = client.post("/orders", headers={"X-API-Key": "not-a-key"}, json=_order_body(product))
    assert wrong.status_code == 401

    bad_scheme = client.post("/orders", headers={"Authorization": "Basic abc"}, json=_order_body(product))
    assert bad_scheme.status_code == 401

    bearer = client.post(
        "/orders",
        headers={"Authorization": f"Bearer {auth_headers['clerk']['X-API-Key']}"},
        json=_order_body(product),
    )
    assert bearer.status_code == 201

    history = client.get(f"/orders/{bearer.json()['id']}/history").json()["history"]
    assert history[0]["actor"] == {"type": "clerk", "id": "clerk-001"}


def test_admin_correction_requires_admin_key(client, auth_headers, make_product):
    clerk = auth_headers["clerk"]
    product = make_product()
    client.post(
        "/inventory/movements",
        headers=clerk,
        json={"product_id": product, "movement_type": "Purchase", "quantity": 5},
    )
    order = client.post("/orders", headers=clerk, json=_order_body(product)).json()
    for status in ("Processing", "Checking"):
        order = client.patch(
            f"/orders/{order['id']}",
            headers=clerk,
            json={"status": status, "expected_version": order["version"]},
        ).json()
    load = client.post(
        "/loading-sheets",
        headers=clerk,
        json={
            "order_ids": [order["id"]],
            "vehicle_ref": "WP-AUTH",
            "driver_ref": "driver-auth",
            "loading_date": "2026-05-01",
        },
    ).json()
    closed = client.post(
        f"/loading-sheets/{load['id']}/reconcile",
        headers=clerk,
        json={
            "updates": [{"order_id": order["id"], "outcome": "Delivered"}],
            "close_load": True,
            "expected_version": load["version"],
        },
    )
    assert closed.json()["status"] == "Completed"

    edit = {
        "driver_ref": "driver-fixed",
        "correction_reason": "driver swapped at depot",
        "expected_version": closed.json()["version"],
    }
    unexplained = client.patch(
        f"/loading-sheets/{load['id']}",
        headers=auth_headers["admin"],
        json={"driver_ref": "driver-fixed", "expected_version": edit["expected_version"]},
    )
    assert unexplained.status_code == 409
    assert unexplained.json()["error"] == "load_closed"

    refused = client.patch(f"/loading-sheets/{load['id']}", headers=clerk, json=edit)
    assert refused.status_code == 403
    assert refused.json()["error"] == "forbidden"
    assert refused.json()["context"]["actor_type"] == "clerk"

    corrected = client.patch(f"/loading-sheets/{load['id']}", headers=auth_headers["admin"], json=edit)
    assert corrected.status_code == 200
    assert corrected.json()["driver_ref"] == "driver-fixed"
    assert corrected.json()["audit"][-1]["reason"] == "driver swapped at depot"


def test_default_keys_are_refused_outside_dev():
    try:
        Settings(env="prod")
    except ValueError as exc:
        assert "FE_ADMIN_API_KEY" in str(exc)
    else:
        raise AssertionError("default keys accepted in prod")
