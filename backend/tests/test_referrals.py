import pytest

from storecore.errors import StateConflictError, ValidationError
from storecore.models import AuditEvent, Influencer, Referral, WalletTransaction
from storecore.services import order_service, policy_service, referral_service, wallet_service

from conftest import deliver, place


def _commission_rows(session):
    return session.query(WalletTransaction).filter_by(category="commission").all()


class TestInfluencerAttribution:
    def test_commission_is_held_at_checkout(self, db_session, customer, make_product, make_influencer, notifier):
        influencer = make_influencer()

        order = place(customer, make_product(price_paise=100000), referral_code="influ01")

        referral = db_session.query(Referral).filter_by(order_id=order.id).one()
        assert referral.referrer_type == "influencer"
        assert referral.status == "converted"
        assert referral.commission_tier == "bronze"
        assert referral.commission_rate_bps == 500
        assert referral.commission_paise == 5000
        assert referral.commission_status == "pending"
        assert order.influencer_id == influencer.id

        summary = wallet_service.get_wallet_summary(influencer.id, "influencer")
        assert summary["pending_balance_paise"] == 5000
        assert summary["balance_paise"] == 0
        assert _commission_rows(db_session) == []
        assert "commission_pending" in notifier.kinds()

    def test_commission_base_excludes_discount(self, db_session, customer, make_product, make_influencer, make_coupon):
        make_influencer()
        make_coupon("SAVE20")

        order = place(customer, make_product(price_paise=100000), referral_code="INFLU01", coupon_code="SAVE20")

        assert db_session.query(Referral).filter_by(order_id=order.id).one().commission_paise == 4000

    def test_delivery_credits_exactly_once(self, db_session, admin, customer, make_product, make_influencer):
        influencer = make_influencer()
        order = place(customer, make_product(price_paise=100000), referral_code="INFLU01")

        order = deliver(order, actor_user_id=admin.id)
        order_service.courier_update(event_id="evt_late", order_ref=order.order_number, status="delivered")
        referral_service.credit_commission_for_order(order)

        rows = _commission_rows(db_session)
        assert len(rows) == 1
        assert rows[0].amount_paise == 5000
        assert rows[0].dedupe_key.startswith("commission:referral:")
        summary = wallet_service.get_wallet_summary(influencer.id, "influencer")
        assert summary["balance_paise"] == 5000
        assert summary["pending_balance_paise"] == 0
        assert summary["total_earned_paise"] == 5000
        assert db_session.query(Referral).filter_by(order_id=order.id).one().commission_status == "credited"

    def test_cancellation_voids_pending_commission(self, db_session, customer, make_product, make_influencer):
        influencer = make_influencer()
        order = place(customer, make_product(price_paise=100000), referral_code="INFLU01")

        order_service.cancel_order(order.id, "Changed my mind", actor_user_id=customer.id)

        referral = db_session.query(Referral).filter_by(order_id=order.id).one()
        assert referral.commission_status == "cancelled"
        assert referral.status == "converted"
        summary = wallet_service.get_wallet_summary(influencer.id, "influencer")
        assert summary["pending_balance_paise"] == 0
        assert summary["balance_paise"] == 0
        assert db_session.query(AuditEvent).filter_by(event_type="referral.commission_voided").count() == 1

    def test_cancellation_reverses_influencer_stats(self, db_session, customer, make_product, make_influencer):
        influencer = make_influencer()
        product = make_product(price_paise=100000)
        kept = place(customer, product, referral_code="INFLU01")
        dropped = place(customer, product, referral_code="INFLU01")
        stats = db_session.get(Influencer, influencer.id)
        assert (stats.total_orders, stats.total_sales_paise) == (2, 200000)

        order_service.cancel_order(dropped.id, "Changed my mind", actor_user_id=customer.id)

        stats = db_session.get(Influencer, influencer.id)
        assert (stats.total_orders, stats.total_sales_paise) == (1, kept.merchandise_paise)

    def test_every_order_program_converts_each_order(self, db_session, customer, make_product, make_influencer):
        influencer = make_influencer()
        product = make_product(price_paise=100000)

        place(customer, product, referral_code="INFLU01")
        place(customer, product, referral_code="INFLU01")

        assert db_session.query(Referral).filter_by(referrer_id=influencer.id, status="converted").count() == 2

    def test_unapproved_influencer_code_is_ignored(self, db_session, customer, make_product, make_influencer):
        make_influencer(approved=False)

        order = place(customer, make_product(), referral_code="INFLU01")

        assert order.order_status == "pending"
        assert db_session.query(Referral).count() == 0


class TestUserReferrals:
    def test_claim_then_first_order_converts(self, db_session, make_user, make_product):
        referrer = make_user("Referrer")
        friend = make_user("Friend")
        product = make_product(price_paise=100000)

        claim = referral_service.claim_referral(friend.id, referrer.referral_code.lower())
        assert claim.status == "pending"
        assert claim.program == "first_order"

        first = place(friend, product)
        place(friend, product)

        referral = db_session.query(Referral).filter_by(referred_user_id=friend.id).one()
        assert referral.order_id == first.id
        assert first.referral_discount_paise == 10000
        assert first.discount_paise == 10000
        assert referral.commission_paise == 4500
        assert referral.reward_paise is None
        assert wallet_service.get_wallet_summary(referrer.id, "user")["pending_balance_paise"] == 4500

    def test_claim_rules(self, db_session, make_user):
        referrer = make_user("Referrer")
        friend = make_user("Friend")

        with pytest.raises(ValidationError):
            referral_service.claim_referral(referrer.id, referrer.referral_code)
        with pytest.raises(ValidationError):
            referral_service.claim_referral(friend.id, "NOSUCH")
        referral_service.claim_referral(friend.id, referrer.referral_code)
        with pytest.raises(StateConflictError):
            referral_service.claim_referral(friend.id, referrer.referral_code)

    def test_self_referral_at_checkout_is_ignored(self, db_session, customer, make_product):
        order = place(customer, make_product(), referral_code=customer.referral_code)

        assert order.id is not None
        assert db_session.query(Referral).count() == 0

    def test_code_on_later_order_does_not_convert(self, db_session, make_user, make_product):
        referrer = make_user("Referrer")
        friend = make_user("Friend")
        product = make_product(price_paise=100000)
        place(friend, product)

        place(friend, product, referral_code=referrer.referral_code)

        assert db_session.query(Referral).count() == 0

    def test_expired_claims(self, db_session, clock, make_user, make_product):
        referrer = make_user("Referrer")
        friend = make_user("Friend")
        referral_service.claim_referral(friend.id, referrer.referral_code)
        clock.advance(days=31)

        assert referral_service.expire_referrals() == 1
        assert referral_service.expire_referrals() == 0
        place(friend, make_product())
        assert db_session.query(Referral).filter_by(referred_user_id=friend.id).one().status == "expired"

    def test_code_at_checkout_discounts_first_order(self, db_session, make_user, make_product):
        referrer = make_user("Referrer")
        friend = make_user("Friend")

        order = place(friend, make_product(price_paise=100000), referral_code=referrer.referral_code)

        assert order.referral_discount_paise == 10000
        assert order.total_paise == 90000
        referral = db_session.query(Referral).filter_by(order_id=order.id).one()
        assert referral.referrer_type == "user"
        assert referral.order_amount_paise == 90000

    def test_coupon_and_referee_discount_do_not_stack(self, db_session, make_user, make_product, make_coupon):
        referrer = make_user("Referrer")
        friend = make_user("Friend")
        make_coupon("SAVE20")

        order = place(friend, make_product(price_paise=100000), referral_code=referrer.referral_code, coupon_code="SAVE20")

        assert order.discount_paise == 20000
        assert order.referral_discount_paise == 0
        assert db_session.query(Referral).filter_by(order_id=order.id).one().commission_paise == 4000

    def test_influencer_code_gets_no_referee_discount(self, db_session, customer, make_product, make_influencer):
        make_influencer()

        order = place(customer, make_product(price_paise=100000), referral_code="INFLU01")

        assert order.referral_discount_paise == 0
        assert order.discount_paise == 0

    def test_referrer_reward_settles_on_delivery(self, db_session, admin, make_user, make_product):
        referrer = make_user("Referrer")
        friend = make_user("Friend")
        referral_service.claim_referral(friend.id, referrer.referral_code)

        order = place(friend, make_product(price_paise=200000))
        referral = db_session.query(Referral).filter_by(order_id=order.id).one()
        assert referral.commission_paise == 9000
        assert referral.reward_paise == 10000
        assert wallet_service.get_wallet_summary(referrer.id, "user")["pending_balance_paise"] == 19000

        deliver(order, actor_user_id=admin.id)

        bonus = db_session.query(WalletTransaction).filter_by(category="referral_bonus").one()
        assert bonus.amount_paise == 10000
        assert bonus.dedupe_key == f"referral_bonus:referral:{referral.id}"
        summary = wallet_service.get_wallet_summary(referrer.id, "user")
        assert summary["balance_paise"] == 19000
        assert summary["pending_balance_paise"] == 0

    def test_no_reward_below_minimum(self, db_session, make_user, make_product):
        referrer = make_user("Referrer")
        friend = make_user("Friend")

        order = place(friend, make_product(price_paise=50000), referral_code=referrer.referral_code)

        assert db_session.query(Referral).filter_by(order_id=order.id).one().reward_paise is None

    def test_cancellation_releases_held_reward(self, db_session, make_user, make_product):
        referrer = make_user("Referrer")
        friend = make_user("Friend")
        order = place(friend, make_product(price_paise=200000), referral_code=referrer.referral_code)
        assert wallet_service.get_wallet_summary(referrer.id, "user")["pending_balance_paise"] == 19000

        order_service.cancel_order(order.id, "Ordered by mistake", actor_user_id=friend.id)

        summary = wallet_service.get_wallet_summary(referrer.id, "user")
        assert summary["pending_balance_paise"] == 0
        assert summary["balance_paise"] == 0
        assert db_session.query(WalletTransaction).filter_by(category="referral_bonus").count() == 0


class TestTiers:
    def test_assigned_tier_prices_new_orders_only(self, db_session, admin, customer, make_user, make_product, make_influencer):
        influencer = make_influencer()
        product = make_product(price_paise=100000)
        first = place(customer, product, referral_code="INFLU01")

        referral_service.assign_tier("influencer", influencer.id, "gold", actor_user_id=admin.id)
        second = place(make_user("Second"), product, referral_code="INFLU01")

        assert db_session.query(Referral).filter_by(order_id=first.id).one().commission_paise == 5000
        later = db_session.query(Referral).filter_by(order_id=second.id).one()
        assert later.commission_tier == "gold"
        assert later.commission_paise == 7000

    def test_influencer_rate_override(self, db_session, admin, customer, make_product, make_influencer):
        influencer = make_influencer()
        product = make_product(price_paise=100000)

        referral_service.set_commission_rate(influencer.id, 900, actor_user_id=admin.id)
        pinned = place(customer, product, referral_code="INFLU01")
        referral_service.set_commission_rate(influencer.id, None, actor_user_id=admin.id)
        tiered = place(customer, product, referral_code="INFLU01")

        first = db_session.query(Referral).filter_by(order_id=pinned.id).one()
        assert first.commission_tier == "bronze"
        assert first.commission_rate_bps == 900
        assert first.commission_paise == 9000
        assert db_session.query(Referral).filter_by(order_id=tiered.id).one().commission_paise == 5000
        assert db_session.query(AuditEvent).filter_by(event_type="referral.rate_overridden").count() == 2

    @pytest.mark.parametrize("rate", [-1, 10001, "900", True])
    def test_rate_override_rejects_bad_values(self, db_session, admin, make_influencer, rate):
        influencer = make_influencer()

        with pytest.raises(ValidationError):
            referral_service.set_commission_rate(influencer.id, rate, actor_user_id=admin.id)

    def test_unknown_tier_rejected(self, db_session, admin, make_influencer):
        influencer = make_influencer()

        with pytest.raises(ValidationError):
            referral_service.assign_tier("influencer", influencer.id, "mythril", actor_user_id=admin.id)

    def test_auto_promotion_by_conversions(self, db_session, admin, customer, make_product, make_influencer):
        policy_service.update_policy(
            {
                "commission.auto_promote": True,
                "commission.tiers": [
                    {"name": "bronze", "rate_bps": 500, "min_conversions": 0},
                    {"name": "silver", "rate_bps": 700, "min_conversions": 1},
                ],
            },
            actor_user_id=admin.id,
        )
        make_influencer()
        product = make_product(price_paise=100000)

        first = place(customer, product, referral_code="INFLU01")
        second = place(customer, product, referral_code="INFLU01")

        assert db_session.query(Referral).filter_by(order_id=first.id).one().commission_tier == "bronze"
        assert db_session.query(Referral).filter_by(order_id=second.id).one().commission_paise == 7000

    def test_commission_info(self, db_session, customer, make_product, make_influencer):
        influencer = make_influencer()
        place(customer, make_product(price_paise=100000), referral_code="INFLU01")

        info = referral_service.get_commission_info("influencer", influencer.id)

        assert info["tier"] == "bronze"
        assert info["successful_referrals"] == 1
        assert info["pending_commission_paise"] == 5000
        assert info["credited_commission_paise"] == 0
