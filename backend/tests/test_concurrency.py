# Overview: Threaded tests for coupon, stock and payout races against a file-backed database.

"""
Concurrency tests.

Each worker thread gets its own app context (and so its own session and
connection) against a shared SQLite file, the way concurrent requests
would hit the store.
"""
import os
import tempfile
import threading
import unittest

from storecore import create_app
from storecore.errors import CouponUsageExhausted, InsufficientFundsError, InsufficientStockError
from storecore.extensions import db
from storecore.models import Coupon, CouponRedemption, Influencer, Payout, Product, User
from storecore.services import order_service, payout_service, wallet_service

ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}
WORKERS = 6


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
            "DB_RETRY_ATTEMPTS": 10,
            "DB_RETRY_BACKOFF_SECONDS": 0.01,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            self.user_ids = []
            for n in range(WORKERS):
                user = User(
                    name=f"Shopper {n}",
                    email=f"shopper{n}@example.com",
                    referral_code=f"SHOP{n:04d}",
                )
                db.session.add(user)
                db.session.commit()
                self.user_ids.append(user.id)

            admin = User(name="Admin", email="admin@example.com", is_admin=True, referral_code="ADMIN001")
            db.session.add(admin)
            db.session.commit()
            self.admin_id = admin.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, targets):
        results = []
        errors = []
        lock = threading.Lock()

        def worker(fn):
            with self.app.app_context():
                try:
                    value = fn()
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(fn,)) for fn in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results, errors

    def _add_product(self, stock):
        product = Product(sku="RACE-1", name="Race Tee", price_paise=100000, stock=stock, category_id=1)
        db.session.add(product)
        db.session.commit()
        return product.id

    def test_single_use_coupon_redeemed_once(self):
        with self.app.app_context():
            product_id = self._add_product(stock=50)
            db.session.add(Coupon(
                code="ONLYONE",
                name="One shot",
                discount_type="fixed",
                discount_value=10000,
                usage_limit=1,
                used_count=0,
                per_user_limit=1,
                is_active=True,
            ))
            db.session.commit()

        def place_for(user_id):
            def _fn():
                return order_service.place_order(
                    user_id=user_id,
                    items=[{"product_id": product_id, "quantity": 1}],
                    shipping_address=dict(ADDRESS),
                    payment_method="cod",
                    coupon_code="ONLYONE",
                ).order_number
            return _fn

        results, errors = self._run_workers([place_for(uid) for uid in self.user_ids])

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), WORKERS - 1)
        self.assertTrue(all(isinstance(e, CouponUsageExhausted) for e in errors), errors)
        with self.app.app_context():
            coupon = db.session.query(Coupon).filter_by(code="ONLYONE").one()
            self.assertEqual(coupon.used_count, 1)
            self.assertEqual(db.session.query(CouponRedemption).count(), 1)
            self.assertEqual(db.session.get(Product, product_id).stock, 49)

    def test_last_unit_sold_once(self):
        with self.app.app_context():
            product_id = self._add_product(stock=1)

        def place_for(user_id):
            def _fn():
                return order_service.place_order(
                    user_id=user_id,
                    items=[{"product_id": product_id, "quantity": 1}],
                    shipping_address=dict(ADDRESS),
                    payment_method="cod",
                ).order_number
            return _fn

        results, errors = self._run_workers([place_for(uid) for uid in self.user_ids])

        self.assertEqual(len(results), 1)
        self.assertTrue(all(isinstance(e, InsufficientStockError) for e in errors), errors)
        with self.app.app_context():
            self.assertEqual(db.session.get(Product, product_id).stock, 0)

    def test_document_numbers_unique_under_load(self):
        with self.app.app_context():
            product_id = self._add_product(stock=100)

        def place_for(user_id):
            def _fn():
                return order_service.place_order(
                    user_id=user_id,
                    items=[{"product_id": product_id, "quantity": 1}],
                    shipping_address=dict(ADDRESS),
                    payment_method="cod",
                ).order_number
            return _fn

        results, errors = self._run_workers([place_for(uid) for uid in self.user_ids])

        self.assertFalse(errors)
        self.assertEqual(len(results), len(set(results)))

    def test_payouts_cannot_overcommit_wallet(self):
        with self.app.app_context():
            influencer = Influencer(
                user_id=self.user_ids[0],
                name="Creator",
                email="shopper0@example.com",
                username="creator",
                referral_code="CREATE01",
                status="approved",
                kyc_verified=True,
                preferred_payout_method="upi",
                upi_id="creator@okbank",
            )
            db.session.add(influencer)
            db.session.commit()
            influencer_id = influencer.id
            owner_user_id = influencer.user_id
            wallet_service.grant_bonus(
                owner_id=influencer_id,
                owner_type="influencer",
                amount_paise=200000,
                reason="Campaign",
                actor_user_id=self.admin_id,
            )
            wallet_id = wallet_service.get_wallet(influencer_id, "influencer").id

        def request():
            return payout_service.request_payout(
                wallet_id=wallet_id,
                amount_paise=100000,
                requested_by_user_id=owner_user_id,
                method=None,
                method_details=None,
            ).payout_number

        results, errors = self._run_workers([request for _ in range(4)])

        self.assertEqual(len(results), 2)
        self.assertEqual(len(errors), 2)
        self.assertTrue(all(isinstance(e, InsufficientFundsError) for e in errors), errors)
        with self.app.app_context():
            summary = wallet_service.get_wallet_summary(influencer_id, "influencer")
            self.assertEqual(summary["reserved_paise"], 200000)
            self.assertEqual(summary["available_paise"], 0)
            self.assertEqual(db.session.query(Payout).count(), 2)


if __name__ == "__main__":
    unittest.main()
