import threading
import unittest
from datetime import datetime, timezone

from facilitydesk.db import connect_database
from facilitydesk.quotes.numbering import DocumentNumberGenerator
from tests.helpers.temp_db import TempDbSandbox


NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


class DocumentNumberingTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="numbering")
        self.db = self._temp_db.open_database()
        self.numbering = DocumentNumberGenerator()

    def tearDown(self) -> None:
        self._temp_db.cleanup()

    def test_counters_are_per_tenant_year_and_scope(self) -> None:
        self.assertEqual(self.numbering.next_quote_number(self.db, "tenant-a", NOW), "DEV-2026-00001")
        self.assertEqual(self.numbering.next_quote_number(self.db, "tenant-a", NOW), "DEV-2026-00002")
        self.assertEqual(self.numbering.next_quote_number(self.db, "tenant-b", NOW), "DEV-2026-00001")
        self.assertEqual(self.numbering.next_order_number(self.db, "tenant-a", NOW), "CMD-2026-00001")
        next_year = datetime(2027, 1, 1, tzinfo=timezone.utc)
        self.assertEqual(self.numbering.next_quote_number(self.db, "tenant-a", next_year), "DEV-2027-00001")

    def test_parallel_numbering_never_collides(self) -> None:
        threads_count = 6
        per_thread = 15
        numbers: list[str] = []
        errors: list[BaseException] = []
        lock = threading.Lock()
        start = threading.Barrier(threads_count)

        def _worker() -> None:
            db = connect_database(self._temp_db.db_path, timeout_seconds=30)
            try:
                start.wait()
                for _ in range(per_thread):
                    with db.transaction():
                        number = self.numbering.next_quote_number(db, "tenant-a", NOW)
                    with lock:
                        numbers.append(number)
            except BaseException as exc:  # noqa: BLE001
                with lock:
                    errors.append(exc)
            finally:
                db.close()

        threads = [threading.Thread(target=_worker) for _ in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(errors, [])
        self.assertEqual(len(numbers), threads_count * per_thread)
        self.assertEqual(len(set(numbers)), len(numbers))
        self.assertEqual(max(numbers), f"DEV-2026-{threads_count * per_thread:05d}")


if __name__ == "__main__":
    unittest.main()
