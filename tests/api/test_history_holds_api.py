# tests/api/test_history_holds_api.py
import pytest

from tests._problem import as_problem

pytestmark = pytest.mark.asyncio

WH = 3


async def _walkthrough(client):
    r = await client.post(
        f"/warehouses/{WH}/bins",
        json={"bins": [{"code": "B1", "capacity": 10}, {"code": "B2", "capacity": 10}]},
    )
    assert r.status_code == 201, r.text
    for ref, sku, qty in (("PA-1", "SKU001", 10), ("PA-2", "SKU001", 5), ("PA-3", "SKU002", 3)):
        r = await client.post(f"/warehouses/{WH}/putaway", json={"ref": ref, "lines": [{"sku": sku, "quantity": qty}]})
        assert r.status_code == 200, r.text
    r = await client.post(f"/warehouses/{WH}/pick", json={"ref": "PK-1", "lines": [{"sku": "SKU002", "quantity": 3}]})
    assert r.status_code == 200, r.text


async def test_history_newest_first_and_filters(client):
    await _walkthrough(client)

    r = await client.get(f"/warehouses/{WH}/history")
    assert r.status_code == 200, r.text
    rows = r.json()
    assert [row["ref"] for row in rows] == ["PK-1", "PA-3", "PA-2", "PA-1"]
    pick = rows[0]
    assert (pick["operation_type"], pick["delta"], pick["quantity"]) == ("PICK", -3, 3)
    assert (pick["qty_before"], pick["qty_after"], pick["is_mixed"]) == (8, 5, True)

    r = await client.get(f"/warehouses/{WH}/history", params={"operation_type": "PUTAWAY", "bin_code": "B2"})
    assert [row["ref"] for row in r.json()] == ["PA-3", "PA-2"]

    r = await client.get(f"/warehouses/{WH}/history", params={"sku": "SKU002", "limit": 1})
    assert [row["ref"] for row in r.json()] == ["PK-1"]


async def test_history_limit_is_bounded(client):
    r = await client.get(f"/warehouses/{WH}/history", params={"limit": 0})
    assert r.status_code == 422, r.text


async def test_movements_and_analytics(client):
    await _walkthrough(client)

    r = await client.get(f"/warehouses/{WH}/history/movements")
    assert r.status_code == 200, r.text
    moves = {(m["sku"], m["bin_code"]): m for m in r.json()}
    assert moves[("SKU002", "B2")] == {
        "sku": "SKU002",
        "bin_code": "B2",
        "opening_qty": 0,
        "inbound_qty": 3,
        "outbound_qty": 3,
        "closing_qty": 0,
    }
    assert moves[("SKU001", "B1")]["closing_qty"] == 10

    r = await client.get(f"/warehouses/{WH}/history/analytics")
    assert r.status_code == 200, r.text
    a = r.json()
    assert a["allocation"]["total_allocations"] == 3
    assert a["allocation"]["allocation_types"]["MIXED_SKU_STORAGE"] == 1
    assert a["pick"]["total_picks"] == 1
    assert a["pick"]["fifo_compliance_rate"] == 100.0


async def test_list_and_force_release_holds(app, client):
    engine = app.state.engine

    async with engine.holds.hold(WH, ["B2", "B1"], owner="lost-worker"):
        r = await client.get(f"/warehouses/{WH}/holds")
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["warehouse_id"] == WH
        assert sorted((h["bin_code"], h["owner"]) for h in body["holds"]) == [
            ("B1", "lost-worker"),
            ("B2", "lost-worker"),
        ]

        r = await client.delete(f"/warehouses/{WH}/holds")
        assert r.status_code == 200, r.text
        assert r.json() == {"warehouse_id": WH, "released": 2}

        r = await client.get(f"/warehouses/{WH}/holds")
        assert r.json()["holds"] == []


async def test_rollback_pick_via_api(client):
    await _walkthrough(client)
    [pick] = (await client.get(f"/warehouses/{WH}/history", params={"operation_type": "PICK"})).json()

    r = await client.post(f"/warehouses/{WH}/history/{pick['id']}/rollback", json={"ref": "RB-1"})
    assert r.status_code == 200, r.text
    out = r.json()
    assert out["ref"] == "RB-1"
    assert out["original"]["id"] == pick["id"]
    [rb] = out["entries"]
    assert (rb["operation_type"], rb["bin_code"], rb["delta"], rb["rollback_of"]) == ("ROLLBACK", "B2", 3, pick["id"])

    b2 = (await client.get(f"/warehouses/{WH}/bins/B2")).json()
    assert (b2["is_mixed"], b2["current_qty"]) == (True, 8)

    r = await client.post(f"/warehouses/{WH}/history/{pick['id']}/rollback")
    assert r.status_code == 409, r.text
    assert as_problem(r.json())["error_code"] == "rollback_rejected"

    rows = (await client.get(f"/warehouses/{WH}/history", params={"operation_type": "ROLLBACK"})).json()
    assert [row["ref"] for row in rows] == ["RB-1"]


async def test_rollback_unknown_entry_is_404(client):
    r = await client.post(f"/warehouses/{WH}/history/424242/rollback")
    assert r.status_code == 404, r.text
    p = as_problem(r.json())
    assert p["error_code"] == "history_entry_not_found"
    assert p["context"]["entry_id"] == 424242


async def test_stock_search(client):
    await _walkthrough(client)

    r = await client.get(f"/warehouses/{WH}/stock/search", params={"q": "b2"})
    assert r.status_code == 200, r.text
    assert [(s["sku"], s["total_quantity"]) for s in r.json()] == [("SKU001", 5)]

    r = await client.get(f"/warehouses/{WH}/stock/search", params={"q": "sku001", "min_quantity": 6})
    [s] = r.json()
    assert [loc["bin_code"] for loc in s["locations"]] == ["B1"]
    assert s["locations"][0]["status"] == "occupied"

    r = await client.get(f"/warehouses/{WH}/stock/search", params={"min_quantity": 0})
    assert r.status_code == 422, r.text
