"""
Catalog import tests: upload parsing, commit phase and sales re-import.

Verifies:
- CSV (with BOM / blank lines), JSON and Excel uploads parse to row dicts
- One bad record never stops the rest of the batch
- Auto-created categories are created once and only alongside a product
- Cancellation keeps what was already inserted
- Import batches record their outcome
"""

import io

import pytest
from openpyxl import Workbook

from duka.models import Category, ImportBatch, Product, Sale
from duka.models.imports import BATCH_CANCELLED, BATCH_COMPLETED, BATCH_FAILED
from duka.services.import_schemas import ImportOptions, UNKNOWN_CATEGORY_REJECT, validate_rows
from duka.services.import_service import (
    CatalogImportError,
    import_batch,
    import_products_file,
    import_sales_csv,
    parse_sale_items,
    parse_upload,
    template_csv,
    validate_products,
)


HEADER = "name,brand,category,unit_size,barcode,buying_price,selling_price,stock,reorder_level,supplier"


def _csv(*lines: str) -> bytes:
    return ("\n".join((HEADER,) + lines) + "\n").encode("utf-8")


def _product_line(index: int, *, barcode: str | None = None, category: str = "Soaps") -> str:
    barcode = barcode if barcode is not None else f"BC{index:04d}"
    return f"Product {index},Brand,{category},100g,{barcode},40,60,5,2,Supplier"


class TestParseUpload:
    def test_csv_with_bom_and_blank_lines(self):
        data = b"\xef\xbb\xbf" + _csv(_product_line(1), ",,,,,,,,,", "", _product_line(2))
        rows = parse_upload("products.csv", io.BytesIO(data))
        assert [r["name"] for r in rows] == ["Product 1", "Product 2"]
        assert [r.row_number for r in rows] == [2, 5]
        assert "name" in rows[0]

    def test_skipped_lines_keep_later_error_rows(self):
        data = b"name,category,buying_price,selling_price,stock\n,,,,\nSoap,Soaps,10,,5\n"
        report = validate_rows(parse_upload("products.csv", data), ["Soaps"])
        assert report.total_rows == 1
        assert {e.row for e in report.errors} == {3}

    def test_json_rows_are_numbered_by_position(self):
        rows = parse_upload("p.json", b'[{"name": ""}, {"name": "Soap"}]')
        assert [r.row_number for r in rows] == [3]

    def test_headers_are_lower_cased(self):
        rows = parse_upload("p.csv", b"Name,Selling_Price\nSoap,10\n")
        assert rows == [{"name": "Soap", "selling_price": "10"}]

    def test_json_list_and_rows_object(self):
        assert parse_upload("p.json", b'[{"Name": "Soap"}]') == [{"name": "Soap"}]
        assert parse_upload("p.json", b'{"rows": [{"name": "Oil"}]}') == [{"name": "Oil"}]

    def test_malformed_json(self):
        with pytest.raises(CatalogImportError):
            parse_upload("p.json", b"[{not json")

    def test_unsupported_extension(self):
        with pytest.raises(CatalogImportError):
            parse_upload("products.txt", b"name\nSoap\n")

    def test_csv_without_header(self):
        with pytest.raises(CatalogImportError):
            parse_upload("empty.csv", b"")

    def test_xlsx_first_sheet(self):
        wb = Workbook()
        ws = wb.active
        ws.append(["Name", "Category", "Selling_Price", "Stock"])
        ws.append(["Nivea Lotion", "Lotions", 180, 25])
        ws.append([None, None, None, None])
        buf = io.BytesIO()
        wb.save(buf)

        rows = parse_upload("products.xlsx", buf.getvalue())
        assert rows == [{"name": "Nivea Lotion", "category": "Lotions", "selling_price": 180, "stock": 25}]

    def test_unreadable_workbook(self):
        with pytest.raises(CatalogImportError):
            parse_upload("products.xlsx", b"not a zip file")

    def test_template_round_trips_through_parser(self):
        rows = parse_upload("template.csv", template_csv().encode("utf-8"))
        assert [r["name"] for r in rows] == ["Dove Soap Bar", "Nivea Lotion"]


class TestImportBatch:
    def test_duplicate_barcode_fails_only_its_record(self, app, db_session, soaps, admin_user):
        lines = [_product_line(i) for i in range(1, 11)]
        lines[4] = _product_line(5, barcode="BC0001")
        result = import_products_file("products.csv", _csv(*lines), created_by_user_id=admin_user.id)

        assert result["success_count"] == 9
        assert result["failed_count"] == 1
        assert result["ok"] is True
        assert [e["row"] for e in result["errors"]] == [6]
        assert db_session.query(Product).count() == 9
        assert db_session.query(Product).filter_by(name="Product 5").count() == 0

        batch = db_session.get(ImportBatch, result["batch_id"])
        assert batch.status == BATCH_COMPLETED
        assert batch.success_count == 9
        assert batch.failed_count == 1
        assert batch.last_processed_row == 11

    def test_new_category_created_once(self, app, db_session):
        data = _csv(*(_product_line(i, category="Shampoos") for i in range(1, 4)))
        result = import_products_file("products.csv", data)

        assert result["success_count"] == 3
        assert result["created_categories"] == ["Shampoos"]
        assert result["categories_to_create"] == ["Shampoos"]
        categories = db_session.query(Category).filter_by(name_key="shampoos").all()
        assert len(categories) == 1
        assert {p.category_id for p in db_session.query(Product).all()} == {categories[0].id}

    def test_failed_record_leaves_no_category(self, app, db_session, make_product):
        make_product("Existing", barcode="TAKEN")
        data = _csv(_product_line(1, barcode="TAKEN", category="Perfumes"))
        result = import_products_file("products.csv", data)

        assert result["success_count"] == 0
        assert result["failed_count"] == 1
        assert result["created_categories"] == []
        assert db_session.query(Category).filter_by(name_key="perfumes").count() == 0

    def test_validation_errors_are_reported_not_inserted(self, app, db_session, soaps):
        data = _csv(_product_line(1), "No Price,Brand,Soaps,100g,X1,40,,5,2,S")
        result = import_products_file("products.csv", data)

        assert result["success_count"] == 1
        assert result["invalid_rows"] == 1
        assert result["errors"] == [{"row": 3, "field": "selling_price", "message": "required"}]

    def test_reject_policy_blocks_unknown_category(self, app, db_session, soaps):
        options = ImportOptions(unknown_category=UNKNOWN_CATEGORY_REJECT)
        data = _csv(_product_line(1), _product_line(2, category="Perfumes"))
        result = import_products_file("products.csv", data, options=options)

        assert result["success_count"] == 1
        assert result["errors"][0]["field"] == "category"
        assert db_session.query(Category).count() == 1

    def test_empty_import_is_not_ok(self, app, db_session):
        result = import_batch([])
        assert result.ok is False
        assert result.catalog_changed is False
        assert db_session.get(ImportBatch, result.batch_id).status == BATCH_FAILED

    def test_progress_reported_per_record(self, app, db_session, soaps):
        report = validate_products(
            parse_upload("p.csv", _csv(*(_product_line(i) for i in range(1, 5))))
        )
        seen = []
        import_batch(report.records, on_progress=seen.append)
        assert seen == [25, 50, 75, 100]

    def test_cancel_keeps_inserted_records(self, app, db_session, soaps):
        report = validate_products(
            parse_upload("p.csv", _csv(*(_product_line(i) for i in range(1, 6))))
        )
        calls = {"n": 0}

        def should_cancel():
            calls["n"] += 1
            return calls["n"] > 2

        result = import_batch(report.records, should_cancel=should_cancel)

        assert result.cancelled is True
        assert result.success_count == 2
        assert db_session.query(Product).count() == 2
        assert db_session.get(ImportBatch, result.batch_id).status == BATCH_CANCELLED


class TestSalesImport:
    SALES_HEADER = "Receipt Number,Date,Items,Total Amount,Payment Method,Cashier"

    def test_parse_sale_items(self):
        assert parse_sale_items("Dove Soap Bar (2), Nivea Lotion (1)") == [
            ("Dove Soap Bar", 2),
            ("Nivea Lotion", 1),
        ]
        with pytest.raises(CatalogImportError):
            parse_sale_items("Dove Soap Bar")

    def test_existing_receipts_are_skipped(self, app, db_session, make_product, admin_user):
        make_product("Dove Soap Bar", selling_price_cents=6500)
        text = "\n".join([
            self.SALES_HEADER,
            'RCP-20261001-000001,2026-10-01 09:30:00,"Dove Soap Bar (2)",130.00,cash,Jane',
            'RCP-20261001-000002,2026-10-01 10:00:00,"Mystery Item (1)",50.00,mpesa,Jane',
        ]) + "\n"

        first = import_sales_csv(io.BytesIO(text.encode()), actor=admin_user, source_file_name="sales.csv")
        assert first["imported"] == 2
        assert first["skipped"] == 0

        second = import_sales_csv(io.BytesIO(text.encode()), actor=admin_user)
        assert second["imported"] == 0
        assert second["skipped"] == 2
        assert db_session.query(Sale).count() == 2

        sale = db_session.query(Sale).filter_by(receipt_number="RCP-20261001-000002").one()
        assert sale.items[0].product_id is None
        assert sale.items[0].unit_price_cents == 0

    def test_missing_columns(self, app, db_session):
        with pytest.raises(CatalogImportError):
            import_sales_csv(b"Receipt Number,Date\nR1,2026-10-01\n")
