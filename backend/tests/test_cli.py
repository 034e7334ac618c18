"""
CLI command tests (flask system / catalog / invoices / backup).
"""

import json

from duka.models import Category, Product, User


class TestSystemCommands:
    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        first = runner.invoke(args=["system", "init"])
        assert first.exit_code == 0
        assert "PASS Created default admin" in first.output

        second = runner.invoke(args=["system", "init"])
        assert "PASS Admin account already exists" in second.output
        assert db_session.query(User).count() == 1

    def test_users_create(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create",
            "--email", "jane@duka.local",
            "--full-name", "Jane",
            "--password", "Cashier123",
            "--role", "cashier",
        ])
        assert "PASS Created user: jane@duka.local" in result.output


class TestCatalogCommands:
    def test_template(self, app):
        result = app.test_cli_runner().invoke(args=["catalog", "template"])
        assert result.output.splitlines()[0].startswith("name,brand,category")

    def test_dry_run_then_import(self, app, db_session, tmp_path):
        path = tmp_path / "products.csv"
        path.write_text(
            "name,category,buying_price,selling_price,stock\n"
            "Dove Soap Bar,Soaps,45,65,50\n"
            "Broken,Soaps,45,65,-1\n",
            encoding="utf-8",
        )
        runner = app.test_cli_runner()

        dry = runner.invoke(args=["catalog", "import", str(path), "--dry-run"])
        assert "FAIL row 3: stock: must be a non-negative number" in dry.output
        assert db_session.query(Product).count() == 0

        real = runner.invoke(args=["catalog", "import", str(path)])
        assert "PASS Imported 1, failed 0" in real.output
        assert db_session.query(Product).count() == 1
        assert db_session.query(Category).filter_by(name_key="soaps").count() == 1


class TestBackupCommands:
    def test_export_and_merge_restore(self, app, db_session, make_product, tmp_path):
        make_product("Dove Soap Bar", barcode="111")
        path = tmp_path / "backup.json"
        runner = app.test_cli_runner()

        exported = runner.invoke(args=["backup", "export", str(path)])
        assert exported.exit_code == 0
        assert json.loads(path.read_text(encoding="utf-8"))["version"] == 1

        restored = runner.invoke(args=["backup", "restore", str(path), "--mode", "merge"])
        assert restored.exit_code == 0
        assert db_session.query(Product).count() == 1

    def test_refresh_statuses(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["invoices", "refresh-statuses"])
        assert "PASS 0 invoice(s) updated" in result.output
