# Overview: Pytest coverage for the HTTP surface (status codes and response shapes).

import pytest

from conftest import site_headers


@pytest.fixture
def headers(tenant_a):
    return site_headers(tenant_a)


def url(site, path):
    return f"/api/sites/{site.slug}{path}"


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"


class TestCatalogRoutes:

    def test_create_category_and_product(self, client, db_session, headers, site_main):
        response = client.post(url(site_main, "/catalog/categories"), json={"name": "Drops", "short_name": "DRP"},
                               headers=headers)
        assert response.status_code == 201
        category_id = response.get_json()["category"]["id"]

        response = client.post(url(site_main, "/catalog/products"), json={
            "category_id": category_id, "name": "Eye drops", "short_name": "EYE", "sale_rate_cents": 799,
        }, headers=headers)
        assert response.status_code == 201
        assert response.get_json()["product"]["current_stock"] == 0

    def test_current_stock_rejected(self, client, db_session, headers, site_main, category_main):
        response = client.post(url(site_main, "/catalog/products"), json={
            "category_id": category_main.id, "name": "X", "short_name": "X", "current_stock": 10,
        }, headers=headers)
        assert response.status_code == 400
        assert response.get_json()["field"] == "current_stock"

    def test_duplicate_is_409(self, client, db_session, headers, site_main, product):
        response = client.patch(url(site_main, f"/catalog/products/{product.id}"), json={"sku": "ok"},
                                headers=headers)
        assert response.status_code == 200
        response = client.post(url(site_main, "/catalog/products"), json={
            "category_id": product.category_id, "name": product.name, "short_name": "NEW",
        }, headers=headers)
        assert response.status_code == 409


class TestStockRoutes:

    def test_stock_in_and_reports(self, client, db_session, headers, site_main, product):
        response = client.post(url(site_main, "/stock/in"), json={"items": [
            {"product_id": product.id, "quantity": 25, "batch_number": "R-1", "expiry_date": "2099-12-31"},
        ]}, headers=headers)
        assert response.status_code == 201
        body = response.get_json()
        assert body["batch"]["remaining_qty"] == 25
        assert body["batch"]["movements"][0]["expiry_date"] == "2099-12-31"

        response = client.get(url(site_main, "/stock/by-product"), headers=headers)
        assert response.get_json()["items"][0]["total_quantity"] == 25

        response = client.get(url(site_main, f"/stock/products/{product.id}/fifo"), headers=headers)
        assert response.get_json()["items"][0]["batch_number"] == "R-1"

        response = client.get(url(site_main, "/stock/batches"), headers=headers)
        assert response.get_json()["count"] == 1

    def test_adjust_negative_is_flagged(self, client, db_session, headers, site_main, product):
        response = client.post(url(site_main, "/stock/adjust"), json={
            "product_id": product.id, "quantity": -4, "reason": "Broken bottles",
        }, headers=headers)
        assert response.status_code == 201
        body = response.get_json()
        assert body["new_stock"] == -4
        assert body["negative_stock"] is True

    def test_stock_in_validation(self, client, db_session, headers, site_main, product):
        response = client.post(url(site_main, "/stock/in"), json={"items": [
            {"product_id": product.id, "quantity": -1},
        ]}, headers=headers)
        assert response.status_code == 400
        assert response.get_json()["field"] == "quantity"

    def test_stock_in_location_must_be_text(self, client, db_session, headers, site_main, product):
        response = client.post(url(site_main, "/stock/in"), json={"items": [
            {"product_id": product.id, "quantity": 5, "location": 5},
        ]}, headers=headers)
        assert response.status_code == 400
        assert response.get_json()["field"] == "location"

    def test_low_and_expiring(self, client, db_session, headers, site_main, product):
        response = client.get(url(site_main, "/stock/low?threshold=5"), headers=headers)
        assert response.get_json()["count"] == 1
        response = client.get(url(site_main, "/stock/expiring?days=-1"), headers=headers)
        assert response.status_code == 400


class TestTransferRoutes:

    def test_transfer_created(self, client, db_session, headers, site_main, site_branch, category_branch,
                              stocked_product):
        response = client.post(url(site_main, "/transfers"), json={
            "destination_site": site_branch.slug,
            "items": [{"product_id": stocked_product.id, "quantity": 10}],
        }, headers=headers)
        assert response.status_code == 201
        body = response.get_json()
        assert body["state"] == "DONE"
        assert body["destination_site"]["slug"] == site_branch.slug

        history = client.get(url(site_main, "/transfers"), headers=headers).get_json()
        assert history["count"] == 1

    def test_insufficient_stock_is_409(self, client, db_session, headers, site_main, site_branch,
                                       category_branch, stocked_product):
        response = client.post(url(site_main, "/transfers"), json={
            "destination_site": site_branch.slug,
            "items": [{"product_id": stocked_product.id, "quantity": 1000}],
        }, headers=headers)
        assert response.status_code == 409
        assert response.get_json()["code"] == "INSUFFICIENT_STOCK"

    def test_cross_tenant_is_409(self, client, db_session, headers, site_main, site_foreign, stocked_product):
        response = client.post(url(site_main, "/transfers"), json={
            "destination_site": site_foreign.slug,
            "items": [{"product_id": stocked_product.id, "quantity": 1}],
        }, headers=headers)
        assert response.status_code == 409
        assert response.get_json()["code"] == "CROSS_TENANT"

    def test_unknown_destination_is_404(self, client, db_session, headers, site_main, stocked_product):
        response = client.post(url(site_main, "/transfers"), json={
            "destination_site": "nowhere",
            "items": [{"product_id": stocked_product.id, "quantity": 1}],
        }, headers=headers)
        assert response.status_code == 404
        assert response.get_json()["code"] == "SITE_NOT_FOUND"

    def test_destination_sites(self, client, db_session, headers, site_main, site_branch, site_foreign):
        body = client.get(url(site_main, "/transfers/sites"), headers=headers).get_json()
        assert [s["slug"] for s in body["items"]] == [site_branch.slug]


class TestSaleRoutes:

    def test_create_and_fetch(self, client, db_session, headers, site_main, stocked_product):
        response = client.post(url(site_main, "/sales"), json={
            "items": [{"product_id": stocked_product.id, "quantity": 3}],
            "customer_phone": "4165550111",
            "paid_amount_cents": 11299,
        }, headers=headers)
        assert response.status_code == 201
        body = response.get_json()
        assert body["bill_no"] == "SALE0001"
        assert body["sale"]["payment_status"] == "PAID"
        assert body["sale"]["items"][0]["tax_cents"] == 1300
        assert body["points_earned"] == 112

        response = client.get(url(site_main, f"/sales/{body['sale_id']}"), headers=headers)
        assert response.get_json()["sale"]["net_amount_cents"] == 11299
        assert response.get_json()["tax_summary"]["lines"] == [{"label": "HST (13%)", "amount_cents": 1300}]

        response = client.get(url(site_main, "/sales/bill/SALE0001"), headers=headers)
        assert response.status_code == 200

        listing = client.get(url(site_main, "/sales?payment_status=PAID"), headers=headers).get_json()
        assert listing["total"] == 1
        assert "items" not in listing["items"][0]

    def test_insufficient_stock_is_409(self, client, db_session, headers, site_main, stocked_product):
        response = client.post(url(site_main, "/sales"), json={
            "items": [{"product_id": stocked_product.id, "quantity": 101}],
        }, headers=headers)
        assert response.status_code == 409
        body = response.get_json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["details"]["available"] == 100

    def test_edit(self, client, db_session, headers, site_main, stocked_product):
        created = client.post(url(site_main, "/sales"), json={
            "items": [{"product_id": stocked_product.id, "quantity": 1}],
        }, headers=headers).get_json()
        item_id = created["sale"]["items"][0]["id"]

        response = client.patch(url(site_main, f"/sales/{created['sale_id']}"), json={
            "edit_reason": "Wrong count", "items": [{"id": item_id, "quantity": 2}],
        }, headers=headers)
        assert response.status_code == 200
        assert response.get_json()["sale"]["is_edited"] is True

        history = client.get(url(site_main, f"/sales/{created['sale_id']}/history"), headers=headers).get_json()
        assert len(history["adjustments"]) == 1

    def test_return_bill(self, client, db_session, headers, site_main, stocked_product):
        client.post(url(site_main, "/sales"), json={
            "items": [{"product_id": stocked_product.id, "quantity": 3}],
        }, headers=headers)

        response = client.post(url(site_main, "/sales"), json={
            "bill_type": "RETURN", "return_for_bill_no": "sale0001", "return_reason": "Expired",
            "items": [{"product_id": stocked_product.id, "quantity": 1}],
            "paid_amount_cents": 3766,
        }, headers=headers)
        assert response.status_code == 201
        sale = response.get_json()["sale"]
        assert sale["bill_type"] == "RETURN"
        assert sale["return_for_bill_no"] == "SALE0001"
        assert sale["payment_status"] == "REFUNDED"

        response = client.post(url(site_main, "/sales"), json={
            "bill_type": "RETURN", "return_for_bill_no": "SALE0001", "return_reason": "Expired",
            "items": [{"product_id": stocked_product.id, "quantity": 3}],
        }, headers=headers)
        assert response.status_code == 400
        assert response.get_json()["details"]["returnable"] == 2

        listing = client.get(url(site_main, "/sales?bill_type=RETURN"), headers=headers).get_json()
        assert listing["total"] == 1

    def test_unknown_sale_is_404(self, client, db_session, headers, site_main):
        assert client.get(url(site_main, "/sales/999"), headers=headers).status_code == 404


class TestLoyaltyRoutes:

    def test_earn_lookup_redeem(self, client, db_session, headers, site_main):
        response = client.post(url(site_main, "/loyalty/earn"), json={
            "phone": "4165550177", "bill_amount_cents": 10000,
        }, headers=headers)
        assert response.get_json()["points_awarded"] == 100

        reward = client.post(url(site_main, "/loyalty/rewards"), json={
            "name": "10% off", "reward_type": "DISCOUNT", "points_required": 40, "discount_percent": "10",
        }, headers=headers)
        assert reward.status_code == 201
        reward_id = reward.get_json()["reward"]["id"]

        lookup = client.get(url(site_main, "/loyalty/accounts?phone=4165550177"), headers=headers).get_json()
        assert lookup["account"]["current_points"] == 100
        assert [r["id"] for r in lookup["eligible_rewards"]] == [reward_id]

        response = client.post(url(site_main, "/loyalty/redeem"), json={
            "account_id": lookup["account"]["id"], "reward_id": reward_id,
        }, headers=headers)
        assert response.status_code == 201
        assert response.get_json()["discount_applied_cents"] == 0

    def test_redeem_against_sale_uses_bill_amount(self, client, db_session, headers, site_main, stocked_product):
        client.post(url(site_main, "/loyalty/earn"), json={"phone": "4165550179", "bill_amount_cents": 10000},
                    headers=headers)
        reward_id = client.post(url(site_main, "/loyalty/rewards"), json={
            "name": "20% off", "reward_type": "DISCOUNT", "points_required": 50,
            "discount_percent": "20", "discount_max_cap_cents": 500,
        }, headers=headers).get_json()["reward"]["id"]
        account = client.get(url(site_main, "/loyalty/accounts?phone=4165550179"), headers=headers).get_json()
        sale = client.post(url(site_main, "/sales"), json={
            "items": [{"product_id": stocked_product.id, "quantity": 3}],
        }, headers=headers).get_json()
        assert sale["sale"]["gross_amount_cents"] == 11299

        response = client.post(url(site_main, "/loyalty/redeem"), json={
            "account_id": account["account"]["id"], "reward_id": reward_id,
            "sale_id": sale["sale_id"], "discount_base_cents": 1,
        }, headers=headers)
        assert response.status_code == 201
        body = response.get_json()
        assert body["discount_applied_cents"] == 500
        assert body["redemption"]["sale_bill_no"] == sale["bill_no"]

        response = client.post(url(site_main, "/loyalty/redeem"), json={
            "account_id": account["account"]["id"], "reward_id": reward_id, "sale_id": sale["sale_id"],
        }, headers=headers)
        assert response.status_code == 409

    def test_insufficient_points_is_409(self, client, db_session, headers, site_main):
        client.post(url(site_main, "/loyalty/earn"), json={"phone": "4165550178", "bill_amount_cents": 1000},
                    headers=headers)
        reward_id = client.post(url(site_main, "/loyalty/rewards"), json={
            "name": "Big", "reward_type": "DISCOUNT", "points_required": 500, "discount_percent": "50",
        }, headers=headers).get_json()["reward"]["id"]
        account = client.get(url(site_main, "/loyalty/accounts?phone=4165550178"), headers=headers).get_json()

        response = client.post(url(site_main, "/loyalty/redeem"), json={
            "account_id": account["account"]["id"], "reward_id": reward_id,
        }, headers=headers)
        assert response.status_code == 409
        assert response.get_json()["code"] == "INSUFFICIENT_POINTS"

    def test_short_phone_lookup(self, client, db_session, headers, site_main):
        body = client.get(url(site_main, "/loyalty/accounts?phone=12"), headers=headers).get_json()
        assert body == {"account": None, "eligible_rewards": []}


class TestTaxRoutes:

    def test_config_and_province(self, client, db_session, headers, site_main):
        body = client.get(url(site_main, "/tax"), headers=headers).get_json()
        assert body["tax_config"]["province_code"] == "ON"

        response = client.put(url(site_main, "/tax/province"), json={"province_code": "QC"}, headers=headers)
        assert response.status_code == 200
        assert response.get_json()["tax_config"]["province_code"] == "QC"

        response = client.put(url(site_main, "/tax/province"), json={"province_code": "XX"}, headers=headers)
        assert response.status_code == 400

    def test_jurisdictions(self, client, db_session, headers, site_main):
        body = client.get(url(site_main, "/tax/jurisdictions"), headers=headers).get_json()
        assert body["count"] == 13
