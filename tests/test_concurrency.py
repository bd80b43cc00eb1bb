# Overview: Concurrency tests for stock-safe order placement and first-run setup on both backends.

"""
Threaded order placement against a few units of stock, and racing setups.

The relational case runs on a file-backed SQLite database so every thread
gets its own connection and the write lock is real.
"""
import os
import tempfile
import threading
import unittest

from storefront.errors import OutOfStock, SetupAlreadyCompleted
from storefront.extensions import db
from storefront.storage import SnapshotStorage, get_storage

from tests.conftest import TEST_ROUNDS, make_app


def _run_workers(count, target):
    threads = [threading.Thread(target=target) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()


class SqlConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = make_app(SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}")

        with self.app.app_context():
            storage = get_storage()
            category = storage.add_category({"name": "ACCOUNT"})
            self.last_unit = storage.add_product(
                {"category_id": category["id"], "name": "Last Unit", "price": 49, "stock": 1}
            )
            self.few_units = storage.add_product(
                {"category_id": category["id"], "name": "Few Units", "price": 10, "stock": 5}
            )
            self.user = storage.add_user({"username": "concurrent_user", "password": "pw"})

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _place(self, product_id, results, lock):
        with self.app.app_context():
            try:
                order = get_storage().place_order(self.user["id"], product_id)
                with lock:
                    results.append(order)
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    def test_two_buyers_one_unit(self):
        results = []
        lock = threading.Lock()

        _run_workers(2, lambda: self._place(self.last_unit["id"], results, lock))

        orders = [r for r in results if isinstance(r, dict)]
        rejected = [r for r in results if isinstance(r, OutOfStock)]
        self.assertEqual(len(orders), 1, results)
        self.assertEqual(len(rejected), 1, results)

        with self.app.app_context():
            storage = get_storage()
            self.assertEqual(storage.get_product(self.last_unit["id"])["stock"], 0)
            self.assertEqual(len(storage.list_orders_for_user(self.user["id"])), 1)
            purchases = [e for e in storage.list_recent_logs() if e["action"] == "Purchase"]
            self.assertEqual(len(purchases), 1)

    def test_many_buyers_never_oversell(self):
        results = []
        lock = threading.Lock()

        _run_workers(8, lambda: self._place(self.few_units["id"], results, lock))

        orders = [r for r in results if isinstance(r, dict)]
        self.assertEqual(len(orders), 5, results)
        self.assertTrue(all(isinstance(r, (dict, OutOfStock)) for r in results), results)

        with self.app.app_context():
            storage = get_storage()
            self.assertEqual(storage.get_product(self.few_units["id"])["stock"], 0)
            self.assertEqual(storage.dashboard_stats()["total_orders"], 5)


class SnapshotConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmpdir.name, "data.json")
        with open(path, "w", encoding="utf-8") as fh:
            fh.write("{}")
        self.storage = SnapshotStorage(path, bcrypt_rounds=TEST_ROUNDS)

        category = self.storage.add_category({"name": "ACCOUNT"})
        self.product = self.storage.add_product(
            {"category_id": category["id"], "name": "Few Units", "price": 10, "stock": 3}
        )
        self.user = self.storage.add_user({"username": "concurrent_user", "password": "pw"})

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_many_buyers_never_oversell(self):
        results = []
        lock = threading.Lock()

        def worker():
            try:
                order = self.storage.place_order(self.user["id"], self.product["id"])
                with lock:
                    results.append(order)
            except Exception as exc:
                with lock:
                    results.append(exc)

        _run_workers(10, worker)

        orders = [r for r in results if isinstance(r, dict)]
        self.assertEqual(len(orders), 3, results)
        self.assertEqual(len({o["id"] for o in orders}), 3)
        self.assertEqual(self.storage.get_product(self.product["id"])["stock"], 0)

        reopened = SnapshotStorage(self.storage.path, bcrypt_rounds=TEST_ROUNDS)
        self.assertEqual(reopened.get_product(self.product["id"])["stock"], 0)
        self.assertEqual(len(reopened.list_orders_for_user(self.user["id"])), 3)


class SetupRaceTests(unittest.TestCase):
    """
    Two first-run setups that both passed the "no users yet" check.

    is_setup_required is held at a barrier so both callers reach the write
    together; exactly one Super Admin may come out of it.
    """

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    @staticmethod
    def _hold_after_check(storage, barrier):
        def is_setup_required():
            barrier.wait(timeout=10)
            return True
        storage.is_setup_required = is_setup_required

    def _race(self, storage, wrap=None):
        barrier = threading.Barrier(2)
        self._hold_after_check(storage, barrier)
        results = []
        lock = threading.Lock()

        def worker(name):
            def call():
                try:
                    user = storage.complete_setup(name, "pw", site_title=f"{name} shop")
                    with lock:
                        results.append(user)
                except Exception as exc:
                    with lock:
                        results.append(exc)
            if wrap is None:
                call()
            else:
                wrap(call)

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("root1", "root2")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        del storage.is_setup_required
        return results

    def _assert_single_admin(self, storage, results):
        created = [r for r in results if isinstance(r, dict)]
        refused = [r for r in results if isinstance(r, SetupAlreadyCompleted)]
        self.assertEqual(len(created), 1, results)
        self.assertEqual(len(refused), 1, results)

        users = storage.list_users()
        self.assertEqual([u["username"] for u in users], [created[0]["username"]])
        self.assertEqual(storage.get_settings()["site_title"], f"{created[0]['username']} shop")

    def test_snapshot_setup_race(self):
        path = os.path.join(self.tmpdir.name, "data.json")
        with open(path, "w", encoding="utf-8") as fh:
            fh.write("{}")
        storage = SnapshotStorage(path, bcrypt_rounds=TEST_ROUNDS)

        results = self._race(storage)

        self._assert_single_admin(storage, results)

    def test_sql_setup_race(self):
        db_path = os.path.join(self.tmpdir.name, "setup.db")
        app = make_app(SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}")

        def in_context(call):
            with app.app_context():
                try:
                    call()
                finally:
                    db.session.remove()

        with app.app_context():
            storage = get_storage()
        results = self._race(storage, wrap=in_context)

        with app.app_context():
            self._assert_single_admin(storage, results)
            db.session.remove()
            db.drop_all()
            db.engine.dispose()
