import pytest

from storecore.errors import (
    InsufficientFundsError,
    InsufficientStockError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from storecore.models import AuditEvent, Order, ProcessedEvent, Product, WalletTransaction
from storecore.services import coupon_service, order_service, policy_service, wallet_service

from conftest import ADDRESS, deliver, place, sign


def _fund_wallet(user, amount, admin):
    wallet_service.adjust_wallet(
        owner_id=user.id,
        owner_type="user",
        direction="credit",
        amount_paise=amount,
        reason="Test funding",
        actor_user_id=admin.id,
    )


class TestPlacement:
    def test_totals_with_coupon_and_free_shipping(self, db_session, customer, make_product, make_coupon):
        make_coupon("SAVE20")
        product = make_product(price_paise=50000, stock=5)

        order = place(customer, product, quantity=2, coupon_code="SAVE20")

        assert order.subtotal_paise == 100000
        assert order.discount_paise == 20000
        assert order.shipping_paise == 0
        assert order.tax_paise == 0
        assert order.total_paise == 80000
        assert order.order_number.startswith("SBV-")
        assert order.order_status == "pending"
        assert order.payment_status == "pending"
        assert db_session.get(Product, product.id).stock == 3

    def test_shipping_below_threshold_and_tax(self, db_session, admin, customer, make_product):
        policy_service.update_policy({"tax.rate_bps": 1800}, actor_user_id=admin.id)
        product = make_product(price_paise=49900)

        order = place(customer, product)

        assert order.shipping_paise == 9900
        assert order.tax_paise == 8982  # 18% of 499.00
        assert order.total_paise == 49900 + 9900 + 8982

    def test_lines_snapshot_catalog(self, db_session, customer, make_product):
        product = make_product(price_paise=25000, with_variant=True)
        variant = product.variants[0]

        order = order_service.place_order(
            user_id=customer.id,
            items=[
                {"product_id": product.id, "variant_id": variant.id, "quantity": 1},
                {"product_id": product.id, "variant_id": variant.id, "quantity": 2},
            ],
            shipping_address=dict(ADDRESS),
            payment_method="cod",
        )

        assert len(order.lines) == 1
        line = order.lines[0]
        assert line.quantity == 3
        assert line.size == "M"
        assert line.line_total_paise == 75000

        product.price_paise = 99999
        db_session.commit()
        assert db_session.get(Order, order.id).lines[0].unit_price_paise == 25000

    def test_totals_survive_policy_and_coupon_changes(self, db_session, admin, customer, make_product, make_coupon):
        policy_service.update_policy({"tax.rate_bps": 1800}, actor_user_id=admin.id)
        coupon = make_coupon("SAVE20")
        order = place(customer, make_product(price_paise=50000), quantity=2, coupon_code="SAVE20")
        placed = (order.subtotal_paise, order.discount_paise, order.shipping_paise, order.tax_paise, order.total_paise)
        assert placed == (100000, 20000, 0, 14400, 94400)

        policy_service.update_policy(
            {
                "tax.rate_bps": 500,
                "shipping.free_threshold_paise": 500000,
                "shipping.standard_rate_paise": 20000,
            },
            actor_user_id=admin.id,
        )
        coupon_service.update_coupon(coupon.id, {"discount_value": 5000}, actor_user_id=admin.id)
        db_session.expire_all()

        reloaded = db_session.get(Order, order.id)
        assert (
            reloaded.subtotal_paise,
            reloaded.discount_paise,
            reloaded.shipping_paise,
            reloaded.tax_paise,
            reloaded.total_paise,
        ) == placed
        assert reloaded.subtotal_paise - reloaded.discount_paise + reloaded.shipping_paise + reloaded.tax_paise == reloaded.total_paise
        assert order_service.get_order(order.id).to_dict()["total_paise"] == 94400

    def test_insufficient_stock_leaves_nothing_behind(self, db_session, customer, make_product, make_coupon):
        coupon = make_coupon("SAVE20")
        plenty = make_product(stock=10)
        scarce = make_product(stock=1)

        with pytest.raises(InsufficientStockError) as exc:
            order_service.place_order(
                user_id=customer.id,
                items=[{"product_id": plenty.id, "quantity": 2}, {"product_id": scarce.id, "quantity": 2}],
                shipping_address=dict(ADDRESS),
                payment_method="cod",
                coupon_code="SAVE20",
            )

        assert exc.value.details["available"] == 1
        assert db_session.query(Order).count() == 0
        assert db_session.get(Product, plenty.id).stock == 10
        db_session.refresh(coupon)
        assert coupon.used_count == 0

    def test_rejects_bad_input(self, db_session, customer, make_product):
        product = make_product()

        with pytest.raises(ValidationError):
            place(customer, product, quantity=0)
        with pytest.raises(ValidationError):
            place(customer, product, payment_method="bitcoin")
        with pytest.raises(ValidationError):
            order_service.place_order(
                user_id=customer.id,
                items=[{"product_id": product.id, "quantity": 1}],
                shipping_address=dict(ADDRESS, pincode="5600"),
                payment_method="cod",
            )
        with pytest.raises(NotFoundError):
            order_service.place_order(
                user_id=customer.id,
                items=[{"product_id": 9999, "quantity": 1}],
                shipping_address=dict(ADDRESS),
                payment_method="cod",
            )

    def test_minimum_order_and_disabled_method(self, db_session, admin, customer, make_product):
        policy_service.update_policy(
            {"checkout.min_order_paise": 60000, "payments.cod_enabled": False},
            actor_user_id=admin.id,
        )
        product = make_product(price_paise=50000)

        with pytest.raises(ValidationError):
            place(customer, product, payment_method="online")
        with pytest.raises(ValidationError):
            place(customer, product, quantity=2, payment_method="cod")
        assert place(customer, product, quantity=2, payment_method="online").total_paise == 100000

    def test_idempotency_key_replays_first_order(self, db_session, customer, make_product):
        product = make_product(stock=5)

        first = place(customer, product, idempotency_key="abc-123")
        second = place(customer, product, idempotency_key="abc-123")

        assert first.id == second.id
        assert db_session.query(Order).count() == 1
        assert db_session.get(Product, product.id).stock == 4

    def test_wallet_payment_debits_and_confirms(self, db_session, admin, customer, make_product):
        _fund_wallet(customer, 150000, admin)
        product = make_product(price_paise=100000)

        order = place(customer, product, payment_method="wallet")

        assert order.payment_status == "paid"
        assert order.order_status == "confirmed"
        summary = wallet_service.get_wallet_summary(customer.id, "user")
        assert summary["balance_paise"] == 50000
        txn = db_session.query(WalletTransaction).filter_by(category="order_payment").one()
        assert txn.dedupe_key == f"order_payment:order:{order.id}"

    def test_wallet_payment_insufficient_funds(self, db_session, admin, customer, make_product):
        _fund_wallet(customer, 1000, admin)
        product = make_product(price_paise=100000, stock=3)

        with pytest.raises(InsufficientFundsError):
            place(customer, product, payment_method="wallet")

        assert db_session.get(Product, product.id).stock == 3
        assert db_session.query(Order).count() == 0

    def test_audit_and_notification(self, db_session, customer, make_product, notifier):
        order = place(customer, make_product())

        event = db_session.query(AuditEvent).filter_by(event_type="order.placed").one()
        assert event.order_id == order.id
        assert event.event_category == "order"
        assert notifier.kinds() == ["order_placed"]


class TestPaymentCallbacks:
    def test_confirm_payment_is_idempotent(self, db_session, customer, make_product, notifier):
        order = place(customer, make_product(), payment_method="online")
        signature = sign(order.order_number, "pay_001")

        first = order_service.confirm_payment(order.order_number, "pay_001", signature)
        second = order_service.confirm_payment(order.order_number, "pay_001", signature)

        assert first.payment_status == second.payment_status == "paid"
        assert second.order_status == "confirmed"
        assert db_session.query(AuditEvent).filter_by(event_type="payment.captured").count() == 1
        assert notifier.kinds().count("payment_captured") == 1

    def test_confirm_with_other_payment_id_conflicts(self, db_session, customer, make_product):
        order = place(customer, make_product(), payment_method="online")
        order_service.confirm_payment(order.order_number, "pay_001", sign(order.order_number, "pay_001"))

        with pytest.raises(StateConflictError):
            order_service.confirm_payment(order.order_number, "pay_002", sign(order.order_number, "pay_002"))

    def test_invalid_signature(self, db_session, customer, make_product):
        order = place(customer, make_product(), payment_method="online")

        with pytest.raises(ValidationError) as exc:
            order_service.confirm_payment(order.order_number, "pay_001", "deadbeef")

        assert exc.value.code == "INVALID_SIGNATURE"
        assert db_session.get(Order, order.id).payment_status == "pending"

    def test_payment_failed_then_retry_succeeds(self, db_session, customer, make_product):
        order = place(customer, make_product(), payment_method="online")

        failed = order_service.payment_failed(order.order_number, "pay_001", "Card declined")
        assert failed.payment_status == "failed"
        assert failed.payment_failure_reason == "Card declined"

        paid = order_service.confirm_payment(order.order_number, "pay_002", sign(order.order_number, "pay_002"))
        assert paid.payment_status == "paid"
        assert paid.payment_failure_reason is None


class TestFulfillment:
    def test_transitions_follow_the_state_machine(self, db_session, admin, customer, make_product):
        order = place(customer, make_product())

        with pytest.raises(StateConflictError):
            order_service.advance_order(order.id, "shipped", actor_user_id=admin.id)
        with pytest.raises(ValidationError):
            order_service.advance_order(order.id, "cancelled", actor_user_id=admin.id)

        order = order_service.advance_order(order.id, "confirmed", actor_user_id=admin.id)
        order = order_service.advance_order(order.id, "processing", actor_user_id=admin.id)
        order = order_service.advance_order(
            order.id,
            "shipped",
            actor_user_id=admin.id,
            tracking={"tracking_number": "AWB123", "courier_name": "BlueDart"},
        )
        assert order.tracking_number == "AWB123"
        assert order.shipped_at is not None

    def test_online_order_needs_payment_before_confirmation(self, db_session, admin, customer, make_product):
        order = place(customer, make_product(), payment_method="online")

        with pytest.raises(StateConflictError):
            order_service.advance_order(order.id, "confirmed", actor_user_id=admin.id)

    def test_cod_is_paid_on_delivery(self, db_session, admin, customer, make_product, clock):
        order = place(customer, make_product())

        order = deliver(order, actor_user_id=admin.id)

        assert order.order_status == "delivered"
        assert order.payment_status == "paid"
        assert order.delivered_at == clock.now()

    def test_courier_webhook_replay_is_noop(self, db_session, admin, customer, make_product):
        order = place(customer, make_product())
        order_service.advance_order(order.id, "confirmed", actor_user_id=admin.id)
        order_service.advance_order(order.id, "processing", actor_user_id=admin.id)

        order_service.courier_update(event_id="evt_1", order_ref=order.order_number, status="delivered")
        again = order_service.courier_update(event_id="evt_1", order_ref=order.order_number, status="delivered")

        assert again.order_status == "delivered"
        changes = db_session.query(AuditEvent).filter_by(event_type="order.status_changed", order_id=order.id).all()
        # confirmed, processing, shipped (implied), delivered
        assert len(changes) == 4


class TestCancellation:
    def test_cancel_releases_stock(self, db_session, customer, make_product):
        product = make_product(stock=5)
        order = place(customer, product, quantity=2)

        cancelled = order_service.cancel_order(order.id, "Changed my mind", actor_user_id=customer.id)

        assert cancelled.order_status == "cancelled"
        assert cancelled.cancel_reason == "Changed my mind"
        assert db_session.get(Product, product.id).stock == 5

    def test_cancel_requires_reason_and_ownership(self, db_session, make_user, customer, make_product):
        order = place(customer, make_product())
        stranger = make_user("Stranger")

        with pytest.raises(ValidationError):
            order_service.cancel_order(order.id, "  ", actor_user_id=customer.id)
        with pytest.raises(PermissionDeniedError):
            order_service.cancel_order(order.id, "Not mine", actor_user_id=stranger.id)

    def test_cannot_cancel_after_shipping(self, db_session, admin, customer, make_product):
        order = place(customer, make_product())
        for status in ("confirmed", "processing", "shipped"):
            order_service.advance_order(order.id, status, actor_user_id=admin.id)

        with pytest.raises(StateConflictError):
            order_service.cancel_order(order.id, "Too late", actor_user_id=customer.id)

    def test_wallet_paid_order_refunds_to_wallet(self, db_session, admin, customer, make_product):
        _fund_wallet(customer, 100000, admin)
        order = place(customer, make_product(price_paise=100000), payment_method="wallet")

        cancelled = order_service.cancel_order(order.id, "Ordered twice", actor_user_id=customer.id)

        assert cancelled.payment_status == "refunded"
        assert cancelled.refund_status == "completed"
        assert cancelled.refund_reference.startswith("TXN-")
        assert wallet_service.get_wallet_summary(customer.id, "user")["balance_paise"] == 100000
        refund = db_session.query(WalletTransaction).filter_by(category="refund").one()
        assert refund.dedupe_key == f"refund:order:{order.id}"

    def test_online_order_refunds_through_gateway(self, db_session, admin, customer, make_product, gateway_backend):
        policy_service.update_policy({"orders.cancel_refund_destination": "original"}, actor_user_id=admin.id)
        order = place(customer, make_product(), payment_method="online")
        order_service.confirm_payment(order.order_number, "pay_001", sign(order.order_number, "pay_001"))

        cancelled = order_service.cancel_order(order.id, "Found it cheaper", actor_user_id=customer.id)

        assert cancelled.refund_status == "completed"
        assert cancelled.refund_reference == "rfnd_0001"
        assert cancelled.payment_status == "refunded"
        assert gateway_backend.refunds[0].url.path == "/v1/payments/pay_001/refund"

    def test_gateway_outage_leaves_refund_pending(self, db_session, admin, customer, make_product, gateway_backend):
        policy_service.update_policy({"orders.cancel_refund_destination": "original"}, actor_user_id=admin.id)
        product = make_product(stock=1)
        order = place(customer, product, payment_method="online")
        order_service.confirm_payment(order.order_number, "pay_001", sign(order.order_number, "pay_001"))
        gateway_backend.fail = True

        cancelled = order_service.cancel_order(order.id, "Changed my mind", actor_user_id=customer.id)

        assert cancelled.order_status == "cancelled"
        assert cancelled.refund_status == "pending"
        assert cancelled.payment_status == "paid"
        assert db_session.get(Product, product.id).stock == 1

        gateway_backend.fail = False
        retried = order_service.retry_pending_refunds()
        assert [o.refund_status for o in retried] == ["completed"]
        assert db_session.get(Order, order.id).payment_status == "refunded"

    def test_capture_after_cancel_is_refunded(self, db_session, customer, make_product, gateway_backend):
        order = place(customer, make_product(), payment_method="online")
        order_service.cancel_order(order.id, "Changed my mind", actor_user_id=customer.id)

        late = order_service.confirm_payment(order.order_number, "pay_late", sign(order.order_number, "pay_late"))

        assert late.order_status == "cancelled"
        assert late.gateway_payment_id == "pay_late"
        assert late.payment_status == "refunded"
        assert late.refund_status == "completed"
        assert gateway_backend.refunds[0].url.path == "/v1/payments/pay_late/refund"
        assert db_session.query(ProcessedEvent).filter_by(source="payment.captured", event_key="pay_late").count() == 1
        assert db_session.query(AuditEvent).filter_by(event_type="payment.captured_after_cancel").count() == 1

    def test_capture_after_cancel_waits_for_gateway(self, db_session, customer, make_product, gateway_backend):
        order = place(customer, make_product(), payment_method="online")
        order_service.cancel_order(order.id, "Changed my mind", actor_user_id=customer.id)
        gateway_backend.fail = True

        late = order_service.confirm_payment(order.order_number, "pay_late", sign(order.order_number, "pay_late"))
        again = order_service.confirm_payment(order.order_number, "pay_late", sign(order.order_number, "pay_late"))

        assert late.payment_status == "paid"
        assert late.refund_status == "pending"
        assert again.refund_status == "pending"
        assert db_session.query(AuditEvent).filter_by(event_type="payment.captured_after_cancel").count() == 1

        gateway_backend.fail = False
        assert [o.refund_status for o in order_service.retry_pending_refunds()] == ["completed"]


def test_list_orders_is_scoped_to_user(db_session, make_user, customer, make_product):
    other = make_user("Other")
    product = make_product(stock=10)
    place(customer, product)
    place(customer, product)
    place(other, product)

    rows, total = order_service.list_orders(user_id=customer.id)

    assert total == 2
    assert all(o.user_id == customer.id for o in rows)
    with pytest.raises(NotFoundError):
        order_service.get_order(rows[0].id, user_id=other.id)
