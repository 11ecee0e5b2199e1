import pytest

from storecore.errors import (
    InsufficientFundsError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from storecore.models import Payout, WalletTransaction
from storecore.services import payout_service, wallet_service

BANK = {
    "account_holder_name": "Asha Rao",
    "account_number": "123456789012",
    "ifsc_code": "hdfc0001234",
    "bank_name": "HDFC Bank",
}


@pytest.fixture
def funded_influencer(db_session, admin, make_influencer):
    influencer = make_influencer()
    wallet_service.grant_bonus(
        owner_id=influencer.id,
        owner_type="influencer",
        amount_paise=200000,
        reason="Launch campaign",
        actor_user_id=admin.id,
    )
    return influencer


def _wallet(influencer):
    return wallet_service.get_wallet(influencer.id, "influencer")


def _request(influencer, amount=100000, **kwargs):
    kwargs.setdefault("method", None)
    kwargs.setdefault("method_details", None)
    return payout_service.request_payout(
        wallet_id=_wallet(influencer).id,
        amount_paise=amount,
        requested_by_user_id=influencer.user_id,
        **kwargs,
    )


def test_request_reserves_without_debiting(db_session, funded_influencer):
    payout = _request(funded_influencer)

    assert payout.status == "pending"
    assert payout.method == "upi"
    assert payout.method_details == {"upi_id": "creator@okbank"}
    assert payout.payout_number.startswith("PAY-")
    summary = wallet_service.get_wallet_summary(funded_influencer.id, "influencer")
    assert summary["balance_paise"] == 200000
    assert summary["reserved_paise"] == 100000
    assert summary["available_paise"] == 100000


def test_reservations_cannot_overcommit(db_session, funded_influencer):
    _request(funded_influencer, 150000)

    with pytest.raises(InsufficientFundsError):
        _request(funded_influencer, 60000)


def test_complete_debits_once(db_session, admin, funded_influencer, notifier):
    payout = _request(funded_influencer)

    done = payout_service.resolve_payout(payout.id, "completed", actor_user_id=admin.id, external_reference="UTR123")

    assert done.status == "completed"
    assert done.transaction_id is not None
    summary = wallet_service.get_wallet_summary(funded_influencer.id, "influencer")
    assert summary["balance_paise"] == 100000
    assert summary["reserved_paise"] == 0
    assert summary["total_withdrawn_paise"] == 100000
    txn = db_session.get(WalletTransaction, done.transaction_id)
    assert txn.dedupe_key == f"withdrawal:payout:{payout.id}"
    assert "payout_completed" in notifier.kinds()

    with pytest.raises(StateConflictError):
        payout_service.resolve_payout(payout.id, "completed", actor_user_id=admin.id, external_reference="UTR124")
    assert db_session.query(WalletTransaction).filter_by(category="withdrawal").count() == 1


def test_reject_releases_reservation(db_session, admin, funded_influencer):
    payout = _request(funded_influencer)

    rejected = payout_service.resolve_payout(payout.id, "rejected", actor_user_id=admin.id, reason="Name mismatch")

    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "Name mismatch"
    summary = wallet_service.get_wallet_summary(funded_influencer.id, "influencer")
    assert summary["balance_paise"] == 200000
    assert summary["available_paise"] == 200000
    assert db_session.query(WalletTransaction).filter_by(category="withdrawal").count() == 0

    with pytest.raises(StateConflictError):
        payout_service.resolve_payout(payout.id, "completed", actor_user_id=admin.id, external_reference="UTR1")


def test_processing_then_failed(db_session, admin, funded_influencer):
    payout = _request(funded_influencer)

    payout_service.resolve_payout(payout.id, "processing", actor_user_id=admin.id)
    failed = payout_service.resolve_payout(payout.id, "failed", actor_user_id=admin.id, reason="Bank bounced")

    assert failed.status == "failed"
    assert failed.processing_at is not None
    assert _wallet(funded_influencer).reserved_paise == 0


def test_decision_inputs_are_required(db_session, admin, funded_influencer):
    payout = _request(funded_influencer)

    with pytest.raises(ValidationError):
        payout_service.resolve_payout(payout.id, "completed", actor_user_id=admin.id)
    with pytest.raises(ValidationError):
        payout_service.resolve_payout(payout.id, "rejected", actor_user_id=admin.id)
    with pytest.raises(ValidationError):
        payout_service.resolve_payout(payout.id, "approved", actor_user_id=admin.id)


def test_minimum_and_eligibility(db_session, admin, make_influencer):
    pending = make_influencer(approved=False, code="PEND01")
    no_kyc = make_influencer(kyc=False, code="NOKYC1")
    for influencer in (pending, no_kyc):
        wallet_service.grant_bonus(
            owner_id=influencer.id, owner_type="influencer", amount_paise=100000,
            reason="Seed", actor_user_id=admin.id,
        )

    with pytest.raises(ValidationError):
        _request(no_kyc, 10000)
    with pytest.raises(ValidationError):
        _request(pending, 60000)
    with pytest.raises(ValidationError):
        _request(no_kyc, 60000)
    assert db_session.query(Payout).count() == 0


def test_bank_details_are_validated(db_session, funded_influencer):
    with pytest.raises(ValidationError):
        _request(funded_influencer, method="bank", method_details=dict(BANK, ifsc_code="BAD"))
    with pytest.raises(ValidationError):
        _request(funded_influencer, method="bank", method_details=dict(BANK, account_number="12AB"))

    payout = _request(funded_influencer, method="bank", method_details=BANK)
    assert payout.method_details["ifsc_code"] == "HDFC0001234"
    assert payout.masked_details()["account_number"].endswith("9012")


def test_only_owner_may_withdraw(db_session, make_user, funded_influencer):
    stranger = make_user("Stranger")

    with pytest.raises(PermissionDeniedError):
        payout_service.request_payout(
            wallet_id=_wallet(funded_influencer).id,
            amount_paise=60000,
            method=None,
            method_details=None,
            requested_by_user_id=stranger.id,
        )


def test_get_payout_hides_other_owners(db_session, funded_influencer, make_user, admin):
    payout = _request(funded_influencer)
    stranger = make_user("Stranger")

    with pytest.raises(NotFoundError):
        payout_service.get_payout(payout.id, viewer=stranger)
    assert payout_service.get_payout(payout.id, viewer=admin).id == payout.id
