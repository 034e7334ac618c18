"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Cashier role is denied admin operations (403)
- Login / me / logout flow
- Product import upload, invoice flow and printing end to end
"""

import io

import pytest

from duka.models import Product


# =============================================================================
# UNAUTHENTICATED ACCESS: 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/users"),
            ("GET", "/api/categories"),
            ("GET", "/api/products"),
            ("POST", "/api/imports/products"),
            ("GET", "/api/imports/products/template"),
            ("POST", "/api/sales/checkout"),
            ("GET", "/api/sales"),
            ("GET", "/api/invoices"),
            ("GET", "/api/invoices/stats"),
            ("GET", "/api/reports/dashboard"),
            ("GET", "/api/backup"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_health_is_public(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"


# =============================================================================
# CASHIER DENIED ADMIN OPERATIONS: 403
# =============================================================================


class TestCashierDenied:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/users"),
            ("POST", "/api/products"),
            ("DELETE", "/api/products/1"),
            ("POST", "/api/categories"),
            ("POST", "/api/imports/products"),
            ("POST", "/api/imports/sales"),
            ("POST", "/api/invoices/1/cancel"),
            ("GET", "/api/reports/sales.csv"),
            ("GET", "/api/backup"),
            ("POST", "/api/backup/restore"),
        ],
    )
    def test_forbidden(self, client, cashier_headers, method, path):
        resp = client.open(path, method=method, headers=cashier_headers, json={})
        assert resp.status_code == 403, f"{method} {path} returned {resp.status_code}"

    def test_cashier_can_read_catalog(self, client, cashier_headers, make_product):
        make_product("Dove Soap Bar")
        resp = client.get("/api/products", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["count"] == 1


# =============================================================================
# SESSION FLOW
# =============================================================================


class TestSessionFlow:
    def test_login_me_logout(self, client, admin_user):
        resp = client.post("/api/auth/login", json={"email": admin_user.email, "password": "Admin12345"})
        assert resp.status_code == 200
        headers = {"Authorization": f"Bearer {resp.json['token']}"}

        me = client.get("/api/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.json["user"]["role"] == "admin"
        assert "password_hash" not in me.json["user"]

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_bad_credentials(self, client, admin_user):
        resp = client.post("/api/auth/login", json={"email": admin_user.email, "password": "wrong-pass1"})
        assert resp.status_code == 401
        resp = client.post("/api/auth/login", json={})
        assert resp.status_code == 400


# =============================================================================
# CATALOG
# =============================================================================


class TestCatalog:
    def test_create_product_by_category_name(self, client, admin_headers, soaps):
        resp = client.post("/api/products", headers=admin_headers, json={
            "name": "Dove Soap Bar",
            "category": "soaps",
            "buying_price_cents": 4500,
            "selling_price_cents": 6500,
            "stock": 12,
            "barcode": "123",
        })
        assert resp.status_code == 201
        assert resp.json["category"] == "Soaps"

        dup = client.post("/api/products", headers=admin_headers, json={
            "name": "Other", "category": "Soaps", "buying_price_cents": 1, "selling_price_cents": 2, "barcode": "123",
        })
        assert dup.status_code == 409

    def test_unknown_field_rejected(self, client, admin_headers, soaps):
        resp = client.post("/api/products", headers=admin_headers, json={
            "name": "X", "category": "Soaps", "buying_price_cents": 1, "selling_price_cents": 2, "id": 5,
        })
        assert resp.status_code == 400

    def test_referenced_product_cannot_be_deleted(self, client, admin_headers, cashier_headers, make_product):
        soap = make_product("Dove Soap Bar")
        sale = client.post("/api/sales/checkout", headers=cashier_headers, json={
            "items": [{"product_id": soap.id, "quantity": 1}],
            "payment_method": "mpesa",
        })
        assert sale.status_code == 201
        assert client.delete(f"/api/products/{soap.id}", headers=admin_headers).status_code == 409

    def test_category_in_use_cannot_be_deleted(self, client, admin_headers, make_product, soaps):
        make_product("Dove Soap Bar")
        assert client.delete(f"/api/categories/{soaps.id}", headers=admin_headers).status_code == 409


# =============================================================================
# IMPORTS
# =============================================================================


class TestImportUpload:
    CSV = (
        "name,category,buying_price,selling_price,stock,barcode\n"
        "Dove Soap Bar,Soaps,45,65,50,111\n"
        "Nivea Lotion,Lotions,120,180,25,222\n"
        "Broken,Soaps,abc,65,5,333\n"
    )

    def test_validate_is_a_dry_run(self, client, admin_headers, db_session):
        resp = client.post(
            "/api/imports/products/validate",
            headers=admin_headers,
            data={"file": (io.BytesIO(self.CSV.encode()), "products.csv")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        assert resp.json["valid_rows"] == 2
        assert resp.json["errors"] == [{"row": 4, "field": "buying_price", "message": "must be a number"}]
        assert db_session.query(Product).count() == 0

    def test_import_commits_valid_rows(self, client, admin_headers, db_session):
        resp = client.post(
            "/api/imports/products",
            headers=admin_headers,
            data={"file": (io.BytesIO(self.CSV.encode()), "products.csv")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 201
        assert resp.json["success_count"] == 2
        assert sorted(resp.json["created_categories"]) == ["Lotions", "Soaps"]
        assert db_session.query(Product).count() == 2

    def test_missing_file(self, client, admin_headers):
        resp = client.post("/api/imports/products", headers=admin_headers, data={},
                           content_type="multipart/form-data")
        assert resp.status_code == 400

    def test_template_download(self, client, cashier_headers):
        resp = client.get("/api/imports/products/template", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"
        assert resp.get_data(as_text=True).startswith("name,brand,category")


# =============================================================================
# INVOICES
# =============================================================================


class TestInvoiceFlow:
    def test_create_finalize_pay_print(self, client, admin_headers, cashier_headers):
        created = client.post("/api/invoices", headers=cashier_headers, json={
            "customer_name": "Mama Njeri Salon",
            "items": [{"description": "Nivea Lotion 200ml", "quantity": 2, "unit_price_cents": 18000}],
        })
        assert created.status_code == 201
        invoice = created.json["invoice"]
        assert invoice["status"] == "draft"
        assert invoice["total_cents"] == 41760

        finalized = client.post(f"/api/invoices/{invoice['id']}/finalize", headers=cashier_headers)
        assert finalized.status_code == 200
        assert finalized.json["invoice"]["invoice_number"].startswith("INV-")

        over = client.post(f"/api/invoices/{invoice['id']}/payments", headers=cashier_headers,
                           json={"amount_cents": 50000, "payment_method": "cash"})
        assert over.status_code == 400

        paid = client.post(f"/api/invoices/{invoice['id']}/payments", headers=cashier_headers,
                           json={"amount_cents": 41760, "payment_method": "mpesa", "reference_number": "QJK1"})
        assert paid.status_code == 201
        assert paid.json["invoice"]["status"] == "paid"
        assert paid.json["invoice"]["balance_due_cents"] == 0

        cancel = client.post(f"/api/invoices/{invoice['id']}/cancel", headers=admin_headers)
        assert cancel.status_code == 400

        printed = client.get(f"/api/invoices/{invoice['id']}/print", headers=cashier_headers)
        assert printed.status_code == 200
        assert printed.mimetype == "text/html"
        assert "Mama Njeri Salon" in printed.get_data(as_text=True)

    def test_bad_invoice_payload(self, client, cashier_headers):
        resp = client.post("/api/invoices", headers=cashier_headers, json={"customer_name": "X", "items": []})
        assert resp.status_code == 400

    def test_missing_invoice(self, client, cashier_headers):
        assert client.get("/api/invoices/999", headers=cashier_headers).status_code == 404
