"""
HTTP surface tests: status codes, error bodies and the end-to-end workflows.
"""

from conftest import ORG_ID, PRODUCT_ID, OTHER_PRODUCT_ID


def _warehouse_with_location(client):
    res = client.post("/api/warehouses", json={"org_id": ORG_ID, "code": "MAIN", "name": "Main"})
    assert res.status_code == 201
    warehouse = res.get_json()["warehouse"]

    res = client.post(f"/api/warehouses/{warehouse['id']}/locations", json={"code": "A-01"})
    assert res.status_code == 201
    return warehouse, res.get_json()["location"]


def _receive(client, location_id, qty, **extra):
    body = {"product_id": PRODUCT_ID, "qty": qty, "reason": "purchase", "to_location_id": location_id}
    body.update(extra)
    res = client.post("/api/stock/moves", json=body)
    assert res.status_code == 201, res.get_json()
    return res.get_json()["move"]


class TestSystem:
    def test_health(self, client, db_session):
        res = client.get("/api/health")

        data = res.get_json()
        assert res.status_code == 200
        assert data["status"] == "ok"
        assert data["checks"]["database"]["status"] == "healthy"
        assert data["checked_at"].endswith("Z")

    def test_cors_header_for_allowed_origin(self, client, db_session):
        res = client.get("/api/health", headers={"Origin": "http://localhost:5173"})

        assert res.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

    def test_cors_header_absent_for_unknown_origin(self, client, db_session):
        res = client.get("/api/health", headers={"Origin": "http://evil.example"})

        assert "Access-Control-Allow-Origin" not in res.headers


class TestWarehouseRoutes:
    def test_create_and_list(self, client, db_session):
        warehouse, location = _warehouse_with_location(client)

        listing = client.get(f"/api/warehouses?org_id={ORG_ID}").get_json()["warehouses"]
        locations = client.get(f"/api/warehouses/{warehouse['id']}/locations").get_json()["locations"]

        assert warehouse["is_default"] is True
        assert [w["code"] for w in listing] == ["MAIN"]
        assert [loc["id"] for loc in locations] == [location["id"]]

    def test_missing_required_field(self, client, db_session):
        res = client.post("/api/warehouses", json={"org_id": ORG_ID, "name": "No code"})

        assert res.status_code == 400
        assert res.get_json()["code"] == "validation_error"

    def test_non_object_body(self, client, db_session):
        res = client.post("/api/warehouses", json=["not", "an", "object"])

        assert res.status_code == 400

    def test_unknown_warehouse(self, client, db_session):
        res = client.get("/api/warehouses/424242")

        assert res.status_code == 404
        assert res.get_json()["code"] == "not_found"

    def test_delete_location_with_stock(self, client, db_session):
        _, location = _warehouse_with_location(client)
        _receive(client, location["id"], 3)

        res = client.delete(f"/api/locations/{location['id']}")

        assert res.status_code == 400


class TestStockRoutes:
    def test_move_and_snapshot(self, client, db_session):
        _, location = _warehouse_with_location(client)
        _receive(client, location["id"], 10, unit_cost_cents=250)

        data = client.get(f"/api/stock/{PRODUCT_ID}").get_json()

        assert (data["qty"], data["reserved_qty"], data["available_qty"]) == (10, 0, 10)
        assert data["items"][0]["cost_per_unit_cents"] == 250

    def test_snapshot_route_is_repeatable(self, client, db_session):
        _, location = _warehouse_with_location(client)
        _receive(client, location["id"], 6, unit_cost_cents=120)

        first = client.get(f"/api/stock/{PRODUCT_ID}").get_json()
        second = client.get(f"/api/stock/{PRODUCT_ID}").get_json()

        assert first == second
        assert [(i["location_id"], i["qty"], i["cost_per_unit_cents"]) for i in first["items"]] == [
            (location["id"], 6, 120)
        ]
        assert len(client.get(f"/api/stock/{PRODUCT_ID}/moves").get_json()["moves"]) == 1

    def test_reason_is_required(self, client, db_session):
        _, location = _warehouse_with_location(client)

        res = client.post(
            "/api/stock/moves",
            json={"product_id": PRODUCT_ID, "qty": 1, "to_location_id": location["id"]},
        )

        assert res.status_code == 400

    def test_insufficient_stock_is_conflict(self, client, db_session):
        _, location = _warehouse_with_location(client)
        _receive(client, location["id"], 2)

        res = client.post(
            "/api/stock/moves",
            json={"product_id": PRODUCT_ID, "qty": 5, "reason": "sale", "from_location_id": location["id"]},
        )

        body = res.get_json()
        assert res.status_code == 409
        assert body["code"] == "insufficient_stock"
        assert body["details"]["product_id"] == PRODUCT_ID

    def test_transfer_and_history_paging(self, client, db_session):
        warehouse, location = _warehouse_with_location(client)
        other = client.post(f"/api/warehouses/{warehouse['id']}/locations", json={"code": "B-01"}).get_json()
        _receive(client, location["id"], 10)

        res = client.post(
            "/api/stock/transfer",
            json={
                "product_id": PRODUCT_ID,
                "from_location_id": location["id"],
                "to_location_id": other["location"]["id"],
                "qty": 4,
            },
        )
        assert res.status_code == 201

        first = client.get(f"/api/stock/{PRODUCT_ID}/moves?limit=1").get_json()
        rest = client.get(f"/api/stock/{PRODUCT_ID}/moves?after_id={first['next_after_id']}").get_json()
        assert len(first["moves"]) == 1
        assert len(rest["moves"]) == 1
        assert rest["moves"][0]["move_type"] == "transfer"

    def test_recount(self, client, db_session):
        _, location = _warehouse_with_location(client)
        _receive(client, location["id"], 10)

        res = client.post(
            "/api/stock/recount",
            json={"product_id": PRODUCT_ID, "location_id": location["id"], "counted_qty": 7},
        )

        data = res.get_json()
        assert res.status_code == 200
        assert data["move"]["reason"] == "recount"
        assert data["item"]["qty"] == 7

    def test_availability(self, client, db_session):
        _, location = _warehouse_with_location(client)
        _receive(client, location["id"], 6)

        res = client.get(f"/api/stock/availability?product_id={PRODUCT_ID},{OTHER_PRODUCT_ID}")

        assert res.get_json()["availability"] == {str(PRODUCT_ID): 6, str(OTHER_PRODUCT_ID): 0}

    def test_bad_integer_query(self, client, db_session):
        res = client.get("/api/stock/availability?product_id=abc")

        assert res.status_code == 400


class TestWorkflowRoutes:
    def test_purchase_order_flow(self, client, db_session):
        warehouse, location = _warehouse_with_location(client)
        res = client.post(
            "/api/purchase-orders",
            json={
                "org_id": ORG_ID,
                "supplier_name": "Acme",
                "warehouse_id": warehouse["id"],
                "lines": [
                    {"product_id": PRODUCT_ID, "qty_ordered": 5, "unit_cost_cents": 300, "location_id": location["id"]}
                ],
            },
        )
        assert res.status_code == 201
        po = res.get_json()["purchase_order"]
        assert po["po_number"] == "PO-0001"

        assert client.post(f"/api/purchase-orders/{po['id']}/send", json={}).status_code == 200
        assert client.post(f"/api/purchase-orders/{po['id']}/confirm", json={}).status_code == 200

        res = client.post(
            f"/api/purchase-orders/{po['id']}/receive",
            json={"receipts": [{"line_id": po["lines"][0]["id"], "qty": 5}]},
        )
        data = res.get_json()
        assert res.status_code == 200
        assert data["status"] == "received"
        assert data["moves"][0]["reason"] == "purchase"

        res = client.post(
            f"/api/purchase-orders/{po['id']}/receive",
            json={"receipts": [{"line_id": po["lines"][0]["id"], "qty": 1}]},
        )
        assert res.status_code == 409

    def test_order_dates_are_iso_dates(self, client, db_session):
        body = {"org_id": ORG_ID, "supplier_name": "Acme", "order_date": "2030-02-01"}

        res = client.post("/api/purchase-orders", json=body)
        assert res.status_code == 201
        assert res.get_json()["purchase_order"]["order_date"] == "2030-02-01"

        res = client.post("/api/purchase-orders", json=dict(body, expected_delivery_date="next week"))
        assert res.status_code == 400
        assert res.get_json()["code"] == "validation_error"

    def test_transitions_are_audited(self, client, db_session):
        res = client.post(
            "/api/purchase-orders",
            json={
                "org_id": ORG_ID,
                "supplier_name": "Acme",
                "lines": [{"product_id": PRODUCT_ID, "qty_ordered": 2}],
            },
        )
        po_id = res.get_json()["purchase_order"]["id"]
        client.post(f"/api/purchase-orders/{po_id}/send", json={})

        res = client.get(f"/api/ledger/events?entity_type=purchase_order&entity_id={po_id}")

        events = res.get_json()["events"]
        assert res.status_code == 200
        assert [e["event_type"] for e in events] == ["purchase_order.sent", "purchase_order.created"]
        assert events[0]["org_id"] == ORG_ID
        assert client.get("/api/ledger/events?limit=0").status_code == 400

    def test_over_receipt_body(self, client, db_session):
        warehouse, location = _warehouse_with_location(client)
        po = client.post(
            "/api/purchase-orders",
            json={
                "org_id": ORG_ID,
                "supplier_name": "Acme",
                "lines": [{"product_id": PRODUCT_ID, "qty_ordered": 2, "location_id": location["id"]}],
            },
        ).get_json()["purchase_order"]
        client.post(f"/api/purchase-orders/{po['id']}/send", json={})
        client.post(f"/api/purchase-orders/{po['id']}/confirm", json={})

        res = client.post(
            f"/api/purchase-orders/{po['id']}/receive",
            json={"receipts": [{"line_id": po["lines"][0]["id"], "qty": 3}]},
        )

        assert res.status_code == 409
        assert res.get_json()["code"] == "over_receipt"

    def test_sales_order_flow(self, client, db_session):
        _, location = _warehouse_with_location(client)
        _receive(client, location["id"], 10)
        so = client.post(
            "/api/sales-orders",
            json={
                "org_id": ORG_ID,
                "customer_name": "Jane",
                "lines": [{"product_id": PRODUCT_ID, "location_id": location["id"], "qty_ordered": 3}],
            },
        ).get_json()["sales_order"]
        line_id = so["lines"][0]["id"]

        res = client.post(f"/api/sales-orders/{so['id']}/confirm", json={})
        assert res.get_json()["status"] == "confirmed"
        reservations = client.get(f"/api/sales-orders/{so['id']}/reservations").get_json()["reservations"]
        assert [r["qty"] for r in reservations] == [3]

        client.post(f"/api/sales-orders/{so['id']}/process", json={})
        res = client.post(f"/api/sales-orders/{so['id']}/picks", json={"picks": [{"line_id": line_id, "qty": 3}]})
        assert res.get_json()["status"] == "picked"
        client.post(f"/api/sales-orders/{so['id']}/pack", json={})

        res = client.post(f"/api/sales-orders/{so['id']}/ship", json={"carrier": "UPS"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "shipped"

        stock = client.get(f"/api/stock/{PRODUCT_ID}").get_json()
        assert (stock["qty"], stock["reserved_qty"]) == (7, 0)

        res = client.post(f"/api/sales-orders/{so['id']}/cancel", json={})
        assert res.status_code == 409
        assert res.get_json()["code"] == "invalid_transition"

    def test_sales_order_insufficient_stock(self, client, db_session):
        _, location = _warehouse_with_location(client)
        so = client.post(
            "/api/sales-orders",
            json={
                "org_id": ORG_ID,
                "customer_name": "Jane",
                "lines": [{"product_id": PRODUCT_ID, "location_id": location["id"], "qty_ordered": 3}],
            },
        ).get_json()["sales_order"]

        res = client.post(f"/api/sales-orders/{so['id']}/confirm", json={})

        assert res.status_code == 409
        assert res.get_json()["code"] == "insufficient_stock"

    def test_adjustment_flow(self, client, db_session):
        _, location = _warehouse_with_location(client)
        _receive(client, location["id"], 10)
        adj = client.post(
            "/api/adjustments",
            json={
                "org_id": ORG_ID,
                "reason": "damage",
                "lines": [{"product_id": PRODUCT_ID, "location_id": location["id"], "qty_adjustment": -2}],
            },
        ).get_json()["adjustment"]

        res = client.post(f"/api/adjustments/{adj['id']}/approve", json={"user_id": 5})

        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"
        assert client.get(f"/api/stock/{PRODUCT_ID}").get_json()["qty"] == 8


class TestAlertAndForecastRoutes:
    def test_refresh_and_acknowledge(self, client, db_session):
        _, location = _warehouse_with_location(client)
        _receive(client, location["id"], 3)

        created = client.post("/api/alerts/refresh", json={}).get_json()["created"]
        assert [a["alert_type"] for a in created] == ["low_stock"]

        res = client.post(f"/api/alerts/{created[0]['id']}/acknowledge", json={"user_id": 2})
        assert res.get_json()["alert"]["status"] == "acknowledged"

        listing = client.get("/api/alerts?status=acknowledged").get_json()["alerts"]
        assert len(listing) == 1

    def test_invalid_alert_filter(self, client, db_session):
        res = client.get("/api/alerts?status=snoozed")

        assert res.status_code == 400

    def test_thresholds(self, client, db_session):
        res = client.put(
            "/api/alerts/thresholds",
            json={"product_id": PRODUCT_ID, "low_stock_qty": 5, "overstock_qty": 3},
        )

        assert res.status_code == 400

    def test_reorder_suggestions_need_products(self, client, db_session):
        res = client.get("/api/forecasts/reorder-suggestions")

        assert res.status_code == 400

    def test_reorder_suggestions_default_oracle(self, client, db_session):
        res = client.get(f"/api/forecasts/reorder-suggestions?product_id={PRODUCT_ID}")

        suggestions = res.get_json()["suggestions"]
        assert res.status_code == 200
        assert suggestions[0]["recommended_order_qty"] == 0

    def test_draft_purchase_order_with_nothing_to_order(self, client, db_session):
        res = client.post(
            "/api/forecasts/draft-purchase-order",
            json={"product_ids": [PRODUCT_ID], "org_id": ORG_ID, "supplier_name": "Acme"},
        )

        assert res.status_code == 200
        assert res.get_json()["purchase_order"] is None
