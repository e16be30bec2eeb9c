import os
import sqlite3
import unittest

from facilitydesk import create_app
from facilitydesk.config import Config
from facilitydesk.db import close_db
from facilitydesk.db_migrations import to_sqlalchemy_url
from tests.helpers.temp_db import TempDbSandbox


def _table_exists(db_path: str, table_name: str) -> bool:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="migrations")
        self.db_path = self._temp_db.db_path
        self._prev_env = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "development"

    def tearDown(self) -> None:
        if self._prev_env is None:
            os.environ.pop("FLASK_ENV", None)
        else:
            os.environ["FLASK_ENV"] = self._prev_env
        self._temp_db.cleanup()

    def _build_app(self, *, testing: bool, db_auto_init: bool):
        cfg = self._temp_db.make_config(Config, TESTING=testing, DB_AUTO_INIT=db_auto_init)
        return create_app(cfg)

    def test_schema_not_created_by_default(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        with app.app_context():
            close_db()

        self.assertFalse(_table_exists(self.db_path, "quotes"))

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()

        for table in ("tenants", "principals", "sites", "quotes", "quote_responses", "access_grants"):
            self.assertTrue(_table_exists(self.db_path, table), table)

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "quotes"))
        self.assertTrue(_table_exists(self.db_path, "notification_outbox"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(_table_exists(self.db_path, "quotes"))

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "quotes"))

    def test_flask_db_current_reports_revision_and_tables(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        empty = runner.invoke(args=["db", "current", "--check"])
        self.assertNotEqual(empty.exit_code, 0)
        self.assertIn("revision: none (head is 20261001_000001)", empty.output)
        self.assertIn("missing tables: tenants, principals, sites", empty.output)

        runner.invoke(args=["db", "upgrade"])
        ready = runner.invoke(args=["db", "current", "--check"])
        self.assertEqual(ready.exit_code, 0, msg=ready.output)
        self.assertIn("revision: 20261001_000001 (head)", ready.output)
        self.assertIn("schema: ready", ready.output)

    def test_flask_db_current_flags_a_dropped_table(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()
        runner.invoke(args=["db", "upgrade"])

        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("DROP TABLE notifications")
            conn.commit()
        finally:
            conn.close()

        listing = runner.invoke(args=["db", "current"])
        self.assertEqual(listing.exit_code, 0, msg=listing.output)
        self.assertIn("missing tables: notifications", listing.output)

        checked = runner.invoke(args=["db", "current", "--check"])
        self.assertNotEqual(checked.exit_code, 0)


class SqlAlchemyUrlTest(unittest.TestCase):
    def test_sqlite_path_becomes_url(self) -> None:
        self.assertTrue(to_sqlalchemy_url("/tmp/facilitydesk.db").startswith("sqlite:///"))

    def test_postgres_scheme_is_normalized(self) -> None:
        url = to_sqlalchemy_url("postgres://user:pw@db:5432/facilitydesk")
        self.assertTrue(url.startswith("postgresql"))
        self.assertIn("db:5432/facilitydesk", url)


if __name__ == "__main__":
    unittest.main()
