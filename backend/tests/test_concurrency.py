# Overview: Threaded concurrency tests for per-product edition numbering.

"""
Concurrent syncs and reassignments against a file-backed SQLite database.

Each worker runs in its own app context (own session and connection), the
way concurrent webhook deliveries do in a threaded server.
"""
import os
import tempfile
import threading
import unittest

from app import create_app
from app.extensions import db
from app.models import LineItem
from app.services import edition_service, integrity_service, sync_service

from conftest import make_line_item, make_order, refund


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            # Writers queue on SQLite's file lock
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
            "WAREHOUSE_API_KEY": "",
            "PRODUCT_LOCK_TIMEOUT_SECONDS": 30.0,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, targets):
        errors = []
        lock = threading.Lock()

        def wrap(target):
            def worker():
                with self.app.app_context():
                    try:
                        target()
                    except Exception as exc:
                        with lock:
                            errors.append(exc)
                    finally:
                        db.session.remove()
            return worker

        threads = [threading.Thread(target=wrap(t)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return errors

    def _active_numbers(self, product_id="P1"):
        with self.app.app_context():
            rows = (
                db.session.query(LineItem)
                .filter(LineItem.product_id == product_id, LineItem.status == "active")
                .all()
            )
            return sorted(r.edition_number for r in rows)

    def test_concurrent_syncs_never_duplicate_numbers(self):
        results = []

        def sync(n):
            def target():
                order = make_order(
                    str(1000 + n),
                    [make_line_item(f"{n}01"), make_line_item(f"{n}02")],
                    created_at=f"2024-03-{n + 1:02d}T10:00:00Z",
                )
                results.append(sync_service.sync_order(order))
            return target

        errors = self._run_workers([sync(n) for n in range(8)])

        self.assertFalse(errors)
        self.assertTrue(all(r.success for r in results), [r.error for r in results if not r.success])
        self.assertEqual(self._active_numbers(), list(range(1, 17)))
        with self.app.app_context():
            self.assertEqual(integrity_service.validate(), [])

    def test_refunds_racing_reassignment_stay_contiguous(self):
        orders = [
            make_order(str(2000 + n), [make_line_item(f"9{n}")], created_at=f"2024-03-{n + 1:02d}T10:00:00Z")
            for n in range(6)
        ]
        with self.app.app_context():
            for order in orders:
                self.assertTrue(sync_service.sync_order(order).success)

        def refund_order(order):
            def target():
                refunded = dict(order, refunds=[refund(order["line_items"][0]["id"])])
                result = sync_service.sync_order(refunded)
                if not result.success:
                    raise AssertionError(result.error)
            return target

        def reassign():
            edition_service.reassign_editions("P1")

        targets = [refund_order(orders[1]), reassign, refund_order(orders[3]), reassign]
        errors = self._run_workers(targets)

        self.assertFalse(errors)
        self.assertEqual(self._active_numbers(), [1, 2, 3, 4])
        with self.app.app_context():
            self.assertEqual(integrity_service.validate(), [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
