"""
Backup export / restore tests.

Verifies:
- Export carries every collection with a version and export date
- Replace restore reproduces the exported data
- Merge restore remaps ids and does not duplicate rows matched by natural key
- Malformed documents are rejected before anything is written
"""

import pytest

from duka.models import Category, Invoice, InvoiceItem, Product, Sale, SaleItem, User
from duka.services.backup_service import (
    BACKUP_VERSION,
    BackupError,
    COLLECTIONS,
    MODE_MERGE,
    export_backup,
    restore_backup,
)
from duka.services.invoice_service import create_invoice, finalize_invoice
from duka.services.sales_service import checkout


@pytest.fixture
def populated(db_session, make_product, admin_user):
    soap = make_product("Dove Soap Bar", barcode="123456789")
    checkout([(soap.id, 2)], payment_method="cash", amount_paid_cents=50000, cashier=admin_user)
    invoice = create_invoice({
        "customer_name": "Mama Njeri Salon",
        "items": [{"description": "Dove Soap Bar", "quantity": 10, "unit_price_cents": 6000, "product_id": soap.id}],
    }, created_by_user_id=admin_user.id)
    finalize_invoice(invoice.id)
    return soap


class TestExport:
    def test_document_shape(self, populated):
        document = export_backup()
        assert document["version"] == BACKUP_VERSION
        assert document["exportDate"].endswith("Z")
        for key, _ in COLLECTIONS:
            assert key in document
        assert len(document["products"]) == 1
        assert document["products"][0]["stock"] == 8
        assert len(document["saleItems"]) == 1
        assert document["invoices"][0]["issue_date"]


class TestReplace:
    def test_round_trip(self, db_session, populated):
        document = export_backup()
        db_session.query(SaleItem).delete()
        db_session.query(Sale).delete()
        db_session.commit()

        result = restore_backup(document)
        assert result["mode"] == "replace"
        assert result["restored"]["sales"] == 1
        assert db_session.query(Sale).count() == 1
        assert db_session.query(SaleItem).count() == 1
        assert db_session.query(Invoice).one().invoice_number.startswith("INV-")

        again = export_backup()
        for key, _ in COLLECTIONS:
            assert again[key] == document[key]


class TestMerge:
    def test_matched_rows_are_not_duplicated(self, db_session, populated):
        document = export_backup()
        result = restore_backup(document, MODE_MERGE)

        assert all(count == 0 for count in result["restored"].values())
        assert db_session.query(User).count() == 1
        assert db_session.query(Product).count() == 1
        assert db_session.query(SaleItem).count() == 1
        assert db_session.query(InvoiceItem).count() == 1

    def test_new_rows_get_new_ids(self, db_session, populated):
        document = {
            "version": BACKUP_VERSION,
            "categories": [{"id": 50, "name": "Perfumes"}],
            "products": [{
                "id": 70,
                "name": "Body Mist",
                "category_id": 50,
                "barcode": "555",
                "buying_price_cents": 30000,
                "selling_price_cents": 45000,
                "stock": 4,
                "reorder_level": 2,
            }],
        }
        result = restore_backup(document, MODE_MERGE)
        assert result["restored"]["categories"] == 1
        assert result["restored"]["products"] == 1

        mist = db_session.query(Product).filter_by(barcode="555").one()
        perfumes = db_session.query(Category).filter_by(name_key="perfumes").one()
        assert mist.category_id == perfumes.id
        assert db_session.query(Product).count() == 2


class TestValidation:
    @pytest.mark.parametrize(
        "document",
        [
            [],
            {"version": 99, "users": []},
            {"version": BACKUP_VERSION},
            {"version": BACKUP_VERSION, "products": "nope"},
            {"version": BACKUP_VERSION, "products": [{"name": "No category", "stock": "lots"}]},
        ],
    )
    def test_rejected_before_writing(self, db_session, populated, document):
        with pytest.raises(BackupError):
            restore_backup(document)
        assert db_session.query(Product).count() == 1

    def test_unknown_mode(self, db_session):
        with pytest.raises(BackupError):
            restore_backup({"version": BACKUP_VERSION, "users": []}, "append")
