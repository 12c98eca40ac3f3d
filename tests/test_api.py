import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest

from bizadmin.auth import issue_token, verify_token
from bizadmin.models import InvoiceStatus


def create_order(client, auth_headers, customer, product, quantity=1, tax_rate="8"):
    return client.post(
        "/erp/orders",
        headers=auth_headers,
        json={
            "customerId": str(customer.id),
            "items": [{"productId": str(product.id), "quantity": quantity}],
            "taxRate": tax_rate,
        },
    )


SECRET = "a-signing-secret-of-at-least-32-bytes"


class TestAuth:
    def test_token_round_trip(self):
        principal = verify_token(issue_token("user-7", "SALES", SECRET), SECRET)

        assert principal.user_id == "user-7"
        assert principal.role == "SALES"

    def test_token_is_a_standard_jwt(self):
        claims = jwt.decode(issue_token("user-7", "SALES", SECRET), SECRET, algorithms=["HS256"])

        assert claims["sub"] == "user-7"
        assert claims["role"] == "SALES"
        assert claims["exp"] > claims["iat"]

    @pytest.mark.parametrize("token", ["", "garbage", "dXNlcjpBRE1JTg.deadbeef"])
    def test_bad_tokens_are_rejected(self, token):
        assert verify_token(token, SECRET) is None

    def test_token_signed_with_another_secret(self):
        assert verify_token(issue_token("user-7", "SALES", "another-secret-of-at-least-32-bytes"), SECRET) is None

    def test_expired_token(self):
        token = issue_token("user-7", "SALES", SECRET, expires_in=timedelta(seconds=-30))

        assert verify_token(token, SECRET) is None

    def test_token_without_role(self):
        token = jwt.encode({"sub": "user-7", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)}, SECRET)

        assert verify_token(token, SECRET) is None

    def test_missing_token(self, client):
        assert client.get("/erp/orders").status_code == 401

    def test_invalid_token(self, client):
        resp = client.get("/erp/orders", headers={"Authorization": "Bearer nope"})

        assert resp.status_code == 401

    def test_health_is_public(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestOrderEndpoints:
    def test_create(self, client, auth_headers, make_customer, make_product):
        customer = make_customer()
        product = make_product(price="100.00")

        resp = create_order(client, auth_headers, customer, product)

        assert resp.status_code == 201
        body = resp.json()
        assert body["orderNumber"].startswith("SO-")
        assert body["status"] == "DRAFT"
        assert body["userId"] == "user-1"
        assert Decimal(body["total"]) == Decimal("108")
        assert body["items"][0]["productId"] == str(product.id)

    def test_create_with_unknown_product(self, client, auth_headers, make_customer, make_product):
        customer = make_customer()
        product = make_product()
        product.id = uuid.uuid4()

        resp = create_order(client, auth_headers, customer, product)

        assert resp.status_code == 400

    def test_create_without_items(self, client, auth_headers, make_customer):
        customer = make_customer()

        resp = client.post("/erp/orders", headers=auth_headers, json={"customerId": str(customer.id), "items": []})

        assert resp.status_code == 422

    def test_create_with_out_of_range_tax_rate(self, client, auth_headers, make_customer, make_product):
        resp = create_order(client, auth_headers, make_customer(), make_product(), tax_rate="1000")

        assert resp.status_code == 422

    def test_confirm_and_track(self, client, auth_headers, make_customer, make_product):
        order = create_order(client, auth_headers, make_customer(), make_product()).json()

        resp = client.post(f"/erp/orders/{order['id']}/confirm", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json()["jobId"] == f"order-{order['id']}"
        assert resp.json()["message"] == "Order confirmed and queued for processing"
        assert resp.json()["status"] == "CONFIRMED"

        status = client.get(f"/erp/orders/{order['id']}/processing-status", headers=auth_headers).json()
        assert status == {
            "orderId": order["id"],
            "orderStatus": "CONFIRMED",
            "processingStatus": "waiting",
            "progress": 0,
        }

        again = client.post(f"/erp/orders/{order['id']}/confirm", headers=auth_headers)
        assert again.status_code == 400
        assert again.json() == {"detail": "Can only confirm draft orders"}

    def test_processed_order_shows_invoice(self, client, auth_headers, make_customer, make_product, process_next):
        order = create_order(client, auth_headers, make_customer(), make_product(stock=5)).json()
        client.post(f"/erp/orders/{order['id']}/confirm", headers=auth_headers)
        process_next()

        body = client.get(f"/erp/orders/{order['id']}", headers=auth_headers).json()

        assert body["status"] == "SHIPPED"
        assert body["invoice"]["invoiceNumber"].startswith("INV-")

    def test_status_update_and_delete(self, client, auth_headers, make_customer, make_product):
        order = create_order(client, auth_headers, make_customer(), make_product()).json()

        resp = client.patch(f"/erp/orders/{order['id']}/status", headers=auth_headers, json={"status": "CANCELLED"})
        assert resp.json()["status"] == "CANCELLED"

        assert client.delete(f"/erp/orders/{order['id']}", headers=auth_headers).status_code == 400

        client.patch(f"/erp/orders/{order['id']}/status", headers=auth_headers, json={"status": "DRAFT"})
        resp = client.delete(f"/erp/orders/{order['id']}", headers=auth_headers)
        assert resp.json() == {"message": "Order deleted successfully"}
        assert client.get(f"/erp/orders/{order['id']}", headers=auth_headers).status_code == 404

    def test_list_filters_by_status(self, client, auth_headers, make_customer, make_product):
        customer = make_customer()
        product = make_product()
        first = create_order(client, auth_headers, customer, product).json()
        create_order(client, auth_headers, customer, product)
        client.post(f"/erp/orders/{first['id']}/confirm", headers=auth_headers)

        body = client.get("/erp/orders", headers=auth_headers, params={"status": "CONFIRMED"}).json()

        assert [o["id"] for o in body["data"]] == [first["id"]]
        assert body["meta"]["total"] == 1

    def test_unknown_order(self, client, auth_headers):
        assert client.get(f"/erp/orders/{uuid.uuid4()}", headers=auth_headers).status_code == 404


class TestInvoiceEndpoints:
    def test_stats(self, client, auth_headers, make_invoice):
        make_invoice(status=InvoiceStatus.PAID, total="20.00")
        make_invoice(status=InvoiceStatus.SENT, total="30.00")

        body = client.get("/erp/invoices/stats", headers=auth_headers).json()

        assert body["total"] == 2
        assert body["paid"] == 1
        assert Decimal(body["totalRevenue"]) == Decimal("20")

    def test_mark_paid(self, client, auth_headers, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.SENT)

        resp = client.patch(f"/erp/invoices/{invoice.id}/status", headers=auth_headers, json={"status": "PAID"})

        assert resp.json()["status"] == "PAID"
        assert resp.json()["paidDate"] is not None

    def test_send(self, client, auth_headers, transport, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.DRAFT)

        resp = client.post(f"/erp/invoices/{invoice.id}/send", headers=auth_headers)

        assert resp.json()["success"] is True
        assert len(transport.sent) == 1
        detail = client.get(f"/erp/invoices/{invoice.id}", headers=auth_headers).json()
        assert detail["status"] == "SENT"

    def test_send_paid_invoice(self, client, auth_headers, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.PAID)

        resp = client.post(f"/erp/invoices/{invoice.id}/send", headers=auth_headers)

        assert resp.status_code == 400


class TestCatalogEndpoints:
    def test_product_lifecycle(self, client, auth_headers):
        payload = {"sku": "GAD-1", "name": "Gadget", "price": "12.50", "stockQuantity": 3, "lowStockThreshold": 5}

        created = client.post("/erp/products", headers=auth_headers, json=payload)
        assert created.status_code == 201
        product_id = created.json()["id"]

        assert client.post("/erp/products", headers=auth_headers, json=payload).status_code == 409

        resp = client.patch(
            f"/erp/products/{product_id}/stock", headers=auth_headers, json={"quantity": 4, "operation": "add"}
        )
        assert resp.json()["stockQuantity"] == 7

        low = client.get("/erp/products", headers=auth_headers, params={"lowStock": "true"}).json()
        assert low["data"] == []

    def test_product_update(self, client, auth_headers, make_product):
        product = make_product(name="Widget", stock=4)

        resp = client.patch(f"/erp/products/{product.id}", headers=auth_headers, json={"name": "Widget Pro"})

        assert resp.status_code == 200
        assert resp.json()["name"] == "Widget Pro"
        assert resp.json()["stockQuantity"] == 4

    @pytest.mark.parametrize("role", ["ADMIN", "SUPER_ADMIN"])
    def test_admins_manage_products(self, client, settings, make_product, role):
        product = make_product(stock=5)
        headers = {"Authorization": f"Bearer {issue_token('user-2', role, settings.auth_secret)}"}

        resp = client.patch(
            f"/erp/products/{product.id}/stock", headers=headers, json={"quantity": 1, "operation": "subtract"}
        )

        assert resp.status_code == 200
        assert resp.json()["stockQuantity"] == 4

    def test_other_roles_cannot_change_products(self, client, settings, container, make_product):
        product = make_product(stock=5)
        headers = {"Authorization": f"Bearer {issue_token('user-2', 'USER', settings.auth_secret)}"}

        stock = client.patch(
            f"/erp/products/{product.id}/stock", headers=headers, json={"quantity": 5, "operation": "subtract"}
        )
        update = client.patch(f"/erp/products/{product.id}", headers=headers, json={"name": "Renamed"})
        delete = client.delete(f"/erp/products/{product.id}", headers=headers)
        create = client.post("/erp/products", headers=headers, json={"sku": "X-1", "name": "X", "price": "1"})

        assert [r.status_code for r in (stock, update, delete, create)] == [403, 403, 403, 403]
        current = container.products.find_by_id(product.id)
        assert current.stock_quantity == 5
        assert current.is_active is True
        assert current.name == product.name

    def test_other_roles_can_read_products(self, client, settings, make_product):
        product = make_product()
        headers = {"Authorization": f"Bearer {issue_token('user-2', 'USER', settings.auth_secret)}"}

        assert client.get(f"/erp/products/{product.id}", headers=headers).status_code == 200

    def test_customer_duplicate_email(self, client, auth_headers):
        payload = {"name": "Acme", "email": "ops@example.com"}

        assert client.post("/erp/customers", headers=auth_headers, json=payload).status_code == 201
        assert client.post("/erp/customers", headers=auth_headers, json=payload).status_code == 409

    def test_customer_update_and_delete(self, client, auth_headers, make_customer):
        customer = make_customer()

        resp = client.patch(f"/erp/customers/{customer.id}", headers=auth_headers, json={"phone": "555-0100"})
        assert resp.json()["phone"] == "555-0100"

        resp = client.delete(f"/erp/customers/{customer.id}", headers=auth_headers)
        assert resp.json() == {"message": "Customer deleted successfully"}
        assert client.get(f"/erp/customers/{customer.id}", headers=auth_headers).status_code == 404

    def test_customer_with_orders_cannot_be_deleted(self, client, auth_headers, make_product, make_order):
        order = make_order([(make_product(), 1)])

        resp = client.delete(f"/erp/customers/{order.customer_id}", headers=auth_headers)

        assert resp.status_code == 409


class TestNotificationEndpoint:
    def test_lists_own_and_broadcast(self, client, auth_headers, container):
        container.notifications.create("order_confirmed", "Mine", "for me", user_id="user-1")
        container.notifications.create("order_confirmed", "Theirs", "not for me", user_id="user-2")
        container.notifications.low_stock("p-1", "Gadget", 1, 5)

        body = client.get("/notifications", headers=auth_headers).json()

        assert [n["title"] for n in body] == ["Low Stock Alert", "Mine"]
        assert body[0]["metadata"]["productName"] == "Gadget"
