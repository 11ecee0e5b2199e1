"""Initial schema: accounts, catalog, orders, coupons, referrals, wallets, payouts, returns, audit

Revision ID: sc001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "sc001_initial"
down_revision = None
branch_labels = None
depends_on = None

NOW = sa.text("CURRENT_TIMESTAMP")


def upgrade():
    # Accounts
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("referral_code", sa.String(length=32), nullable=True),
        sa.Column("referred_by_user_id", sa.Integer(), nullable=True),
        sa.Column("tier", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["referred_by_user_id"], ["users.id"], name="fk_users_referred_by_user_id_users"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_is_active", "users", ["is_active"], unique=False)
    op.create_index("ix_users_referral_code", "users", ["referral_code"], unique=True)

    op.create_table(
        "influencers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("referral_code", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("tier", sa.String(length=16), nullable=False),
        sa.Column("commission_rate_bps", sa.Integer(), nullable=True),
        sa.Column("kyc_verified", sa.Boolean(), nullable=False),
        sa.Column("kyc_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("preferred_payout_method", sa.String(length=8), nullable=False),
        sa.Column("account_holder_name", sa.String(length=128), nullable=True),
        sa.Column("account_number", sa.String(length=32), nullable=True),
        sa.Column("ifsc_code", sa.String(length=16), nullable=True),
        sa.Column("bank_name", sa.String(length=128), nullable=True),
        sa.Column("upi_id", sa.String(length=128), nullable=True),
        sa.Column("total_orders", sa.Integer(), nullable=False),
        sa.Column("total_sales_paise", sa.BigInteger(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_influencers_user_id_users"),
        sa.UniqueConstraint("user_id", name="uq_influencers_user_id"),
        sa.UniqueConstraint("username", name="uq_influencers_username"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_influencers_referral_code", "influencers", ["referral_code"], unique=True)
    op.create_index("ix_influencers_status", "influencers", ["status"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_session_tokens_user_id_users"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"], unique=False)
    op.create_index("ix_session_tokens_token_hash", "session_tokens", ["token_hash"], unique=True)
    op.create_index("ix_session_tokens_expires_at", "session_tokens", ["expires_at"], unique=False)
    op.create_index("ix_session_tokens_user_active", "session_tokens", ["user_id", "is_revoked"], unique=False)

    # Catalog
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("price_paise", sa.BigInteger(), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("image_url", sa.String(length=512), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_category_id", "products", ["category_id"], unique=False)

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("size", sa.String(length=32), nullable=True),
        sa.Column("color", sa.String(length=32), nullable=True),
        sa.Column("price_paise", sa.BigInteger(), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.CheckConstraint("stock >= 0", name="ck_variants_stock_non_negative"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_product_variants_product_id_products"),
        sa.UniqueConstraint("sku", name="uq_product_variants_sku"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"], unique=False)

    # Policy store
    op.create_table(
        "policy_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("value_json", sa.JSON(), nullable=True),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["updated_by_user_id"], ["users.id"], name="fk_policy_settings_updated_by_user_id_users"),
        sa.UniqueConstraint("key", name="uq_policy_settings_key"),
        sqlite_autoincrement=True,
    )

    # Coupons
    op.create_table(
        "coupons",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_type", sa.String(length=16), nullable=False),
        sa.Column("discount_value", sa.BigInteger(), nullable=False),
        sa.Column("min_order_paise", sa.BigInteger(), nullable=True),
        sa.Column("max_discount_paise", sa.BigInteger(), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False),
        sa.Column("per_user_limit", sa.Integer(), nullable=False),
        sa.Column("applicable_category_ids", sa.JSON(), nullable=True),
        sa.Column("applicable_product_ids", sa.JSON(), nullable=True),
        sa.Column("excluded_category_ids", sa.JSON(), nullable=True),
        sa.Column("excluded_product_ids", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint("usage_limit IS NULL OR used_count <= usage_limit", name="ck_coupons_used_within_limit"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], name="fk_coupons_created_by_user_id_users"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)
    op.create_index("ix_coupons_is_active", "coupons", ["is_active"], unique=False)

    # Orders
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("subtotal_paise", sa.BigInteger(), nullable=False),
        sa.Column("discount_paise", sa.BigInteger(), nullable=False),
        sa.Column("referral_discount_paise", sa.BigInteger(), nullable=False),
        sa.Column("shipping_paise", sa.BigInteger(), nullable=False),
        sa.Column("tax_paise", sa.BigInteger(), nullable=False),
        sa.Column("total_paise", sa.BigInteger(), nullable=False),
        sa.Column("coupon_id", sa.Integer(), nullable=True),
        sa.Column("coupon_code", sa.String(length=32), nullable=True),
        sa.Column("referral_code", sa.String(length=32), nullable=True),
        sa.Column("influencer_id", sa.Integer(), nullable=True),
        sa.Column("shipping_address", sa.JSON(), nullable=False),
        sa.Column("billing_address", sa.JSON(), nullable=True),
        sa.Column("payment_method", sa.String(length=16), nullable=False),
        sa.Column("payment_status", sa.String(length=24), nullable=False),
        sa.Column("gateway_payment_id", sa.String(length=128), nullable=True),
        sa.Column("payment_captured_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_failure_reason", sa.String(length=255), nullable=True),
        sa.Column("refund_status", sa.String(length=16), nullable=True),
        sa.Column("refund_reference", sa.String(length=128), nullable=True),
        sa.Column("order_status", sa.String(length=16), nullable=False),
        sa.Column("tracking_number", sa.String(length=128), nullable=True),
        sa.Column("tracking_url", sa.String(length=512), nullable=True),
        sa.Column("courier_name", sa.String(length=128), nullable=True),
        sa.Column("expected_delivery", sa.String(length=64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.String(length=255), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), nullable=True),
        sa.Column("return_reason", sa.String(length=255), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "total_paise = subtotal_paise - discount_paise + shipping_paise + tax_paise",
            name="ck_orders_total_balances",
        ),
        sa.CheckConstraint("discount_paise >= 0 AND discount_paise <= subtotal_paise", name="ck_orders_discount_range"),
        sa.CheckConstraint(
            "referral_discount_paise >= 0 AND referral_discount_paise <= discount_paise",
            name="ck_orders_referral_discount_range",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_orders_user_id_users"),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"], name="fk_orders_coupon_id_coupons"),
        sa.ForeignKeyConstraint(["influencer_id"], ["influencers.id"], name="fk_orders_influencer_id_influencers"),
        sa.ForeignKeyConstraint(["cancelled_by_user_id"], ["users.id"], name="fk_orders_cancelled_by_user_id_users"),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sa.UniqueConstraint("gateway_payment_id", name="uq_orders_gateway_payment_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"], unique=False)
    op.create_index("ix_orders_influencer_id", "orders", ["influencer_id"], unique=False)
    op.create_index("ix_orders_payment_status", "orders", ["payment_status"], unique=False)
    op.create_index("ix_orders_order_status", "orders", ["order_status"], unique=False)
    op.create_index("ix_orders_user_created", "orders", ["user_id", "created_at"], unique=False)
    op.create_index("ix_orders_status_created", "orders", ["order_status", "created_at"], unique=False)

    op.create_table(
        "order_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("image_url", sa.String(length=512), nullable=True),
        sa.Column("size", sa.String(length=32), nullable=True),
        sa.Column("color", sa.String(length=32), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("unit_price_paise", sa.BigInteger(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("line_total_paise", sa.BigInteger(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], name="fk_order_lines_order_id_orders"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_order_lines_product_id_products"),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"], name="fk_order_lines_variant_id_product_variants"),
        sa.UniqueConstraint("order_id", "line_number", name="uq_order_lines_order_line"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_order_lines_order_id", "order_lines", ["order_id"], unique=False)

    op.create_table(
        "coupon_redemptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("coupon_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("discount_paise", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"], name="fk_coupon_redemptions_coupon_id_coupons"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_coupon_redemptions_user_id_users"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], name="fk_coupon_redemptions_order_id_orders"),
        sa.UniqueConstraint("order_id", name="uq_coupon_redemptions_order_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_coupon_redemptions_coupon_id", "coupon_redemptions", ["coupon_id"], unique=False)
    op.create_index("ix_coupon_redemptions_user_id", "coupon_redemptions", ["user_id"], unique=False)
    op.create_index("ix_coupon_redemptions_coupon_user", "coupon_redemptions", ["coupon_id", "user_id"], unique=False)

    # Referrals
    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("referrer_id", sa.Integer(), nullable=False),
        sa.Column("referrer_type", sa.String(length=16), nullable=False),
        sa.Column("referred_user_id", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(length=32), nullable=False),
        sa.Column("program", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("order_amount_paise", sa.BigInteger(), nullable=True),
        sa.Column("commission_tier", sa.String(length=16), nullable=True),
        sa.Column("commission_rate_bps", sa.Integer(), nullable=True),
        sa.Column("commission_paise", sa.BigInteger(), nullable=True),
        sa.Column("commission_status", sa.String(length=16), nullable=False),
        sa.Column("reward_paise", sa.BigInteger(), nullable=True),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("credited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["referred_user_id"], ["users.id"], name="fk_referrals_referred_user_id_users"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], name="fk_referrals_order_id_orders"),
        sa.UniqueConstraint("order_id", name="uq_referrals_order_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_referrals_status", "referrals", ["status"], unique=False)
    op.create_index("ix_referrals_commission_status", "referrals", ["commission_status"], unique=False)
    op.create_index("ix_referrals_expires_at", "referrals", ["expires_at"], unique=False)
    op.create_index("ix_referrals_referrer", "referrals", ["referrer_type", "referrer_id", "status"], unique=False)
    op.create_index("ix_referrals_referred_user", "referrals", ["referred_user_id", "status"], unique=False)

    # Wallets and ledger
    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("owner_type", sa.String(length=16), nullable=False),
        sa.Column("balance_paise", sa.BigInteger(), nullable=False),
        sa.Column("pending_balance_paise", sa.BigInteger(), nullable=False),
        sa.Column("reserved_paise", sa.BigInteger(), nullable=False),
        sa.Column("total_earned_paise", sa.BigInteger(), nullable=False),
        sa.Column("total_withdrawn_paise", sa.BigInteger(), nullable=False),
        sa.Column("total_credits_paise", sa.BigInteger(), nullable=False),
        sa.Column("total_debits_paise", sa.BigInteger(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("owner_id", "owner_type", name="uq_wallets_owner"),
        sa.CheckConstraint("balance_paise >= 0", name="ck_wallets_balance_non_negative"),
        sa.CheckConstraint("balance_paise = total_credits_paise - total_debits_paise", name="ck_wallets_balance_matches_totals"),
        sa.CheckConstraint("reserved_paise >= 0 AND reserved_paise <= balance_paise", name="ck_wallets_reserved_range"),
        sa.CheckConstraint("pending_balance_paise >= 0", name="ck_wallets_pending_non_negative"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_number", sa.String(length=32), nullable=False),
        sa.Column("wallet_id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("owner_type", sa.String(length=16), nullable=False),
        sa.Column("direction", sa.String(length=8), nullable=False),
        sa.Column("amount_paise", sa.BigInteger(), nullable=False),
        sa.Column("balance_after_paise", sa.BigInteger(), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("reference_type", sa.String(length=16), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("dedupe_key", sa.String(length=96), nullable=True),
        sa.Column("details_json", sa.JSON(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount_paise > 0", name="ck_wallet_txns_amount_positive"),
        sa.ForeignKeyConstraint(["wallet_id"], ["wallets.id"], name="fk_wallet_transactions_wallet_id_wallets"),
        sa.UniqueConstraint("transaction_number", name="uq_wallet_transactions_transaction_number"),
        sa.UniqueConstraint("dedupe_key", name="uq_wallet_transactions_dedupe_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"], unique=False)
    op.create_index("ix_wallet_transactions_category", "wallet_transactions", ["category"], unique=False)
    op.create_index("ix_wallet_txns_wallet_created", "wallet_transactions", ["wallet_id", "created_at"], unique=False)
    op.create_index("ix_wallet_txns_reference", "wallet_transactions", ["reference_type", "reference_id"], unique=False)

    # Payouts
    op.create_table(
        "payouts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payout_number", sa.String(length=32), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("owner_type", sa.String(length=16), nullable=False),
        sa.Column("wallet_id", sa.Integer(), nullable=False),
        sa.Column("amount_paise", sa.BigInteger(), nullable=False),
        sa.Column("method", sa.String(length=8), nullable=False),
        sa.Column("method_details", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("processed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("processing_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_reference", sa.String(length=128), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint("amount_paise > 0", name="ck_payouts_amount_positive"),
        sa.ForeignKeyConstraint(["wallet_id"], ["wallets.id"], name="fk_payouts_wallet_id_wallets"),
        sa.ForeignKeyConstraint(["processed_by_user_id"], ["users.id"], name="fk_payouts_processed_by_user_id_users"),
        sa.ForeignKeyConstraint(["transaction_id"], ["wallet_transactions.id"], name="fk_payouts_transaction_id_wallet_transactions"),
        sa.UniqueConstraint("payout_number", name="uq_payouts_payout_number"),
        sa.UniqueConstraint("transaction_id", name="uq_payouts_transaction_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payouts_wallet_id", "payouts", ["wallet_id"], unique=False)
    op.create_index("ix_payouts_status", "payouts", ["status"], unique=False)
    op.create_index("ix_payouts_owner_status", "payouts", ["owner_type", "owner_id", "status"], unique=False)

    # Returns
    op.create_table(
        "return_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("return_number", sa.String(length=32), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("refund_destination", sa.String(length=16), nullable=False),
        sa.Column("refund_method", sa.String(length=16), nullable=True),
        sa.Column("refund_amount_paise", sa.BigInteger(), nullable=True),
        sa.Column("refund_status", sa.String(length=16), nullable=True),
        sa.Column("refund_reference", sa.String(length=128), nullable=True),
        sa.Column("refund_transaction_id", sa.Integer(), nullable=True),
        sa.Column("pickup_scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_initiated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], name="fk_return_requests_order_id_orders"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_return_requests_user_id_users"),
        sa.ForeignKeyConstraint(["refund_transaction_id"], ["wallet_transactions.id"], name="fk_return_requests_refund_transaction_id_wallet_transactions"),
        sa.UniqueConstraint("return_number", name="uq_return_requests_return_number"),
        sa.UniqueConstraint("refund_transaction_id", name="uq_return_requests_refund_transaction_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_return_requests_order_id", "return_requests", ["order_id"], unique=False)
    op.create_index("ix_return_requests_user_id", "return_requests", ["user_id"], unique=False)
    op.create_index("ix_return_requests_status", "return_requests", ["status"], unique=False)
    op.create_index("ix_return_requests_order_status", "return_requests", ["order_id", "status"], unique=False)

    op.create_table(
        "return_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("return_id", sa.Integer(), nullable=False),
        sa.Column("order_line_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("unit_price_paise", sa.BigInteger(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_return_lines_quantity_positive"),
        sa.ForeignKeyConstraint(["return_id"], ["return_requests.id"], name="fk_return_lines_return_id_return_requests"),
        sa.ForeignKeyConstraint(["order_line_id"], ["order_lines.id"], name="fk_return_lines_order_line_id_order_lines"),
        sa.UniqueConstraint("return_id", "order_line_id", name="uq_return_lines_return_order_line"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_return_lines_return_id", "return_lines", ["return_id"], unique=False)
    op.create_index("ix_return_lines_order_line_id", "return_lines", ["order_line_id"], unique=False)

    # Audit, idempotency and numbering
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("event_category", sa.String(length=32), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], name="fk_audit_events_actor_user_id_users"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], name="fk_audit_events_order_id_orders"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"], unique=False)
    op.create_index("ix_audit_events_actor_user_id", "audit_events", ["actor_user_id"], unique=False)
    op.create_index("ix_audit_events_order_id", "audit_events", ["order_id"], unique=False)
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"], unique=False)
    op.create_index("ix_audit_events_category_occurred", "audit_events", ["event_category", "occurred_at"], unique=False)

    op.create_table(
        "processed_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("event_key", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("source", "event_key", name="uq_processed_events_source_key"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        sqlite_autoincrement=True,
    )


def downgrade():
    for table in (
        "document_sequences",
        "processed_events",
        "audit_events",
        "return_lines",
        "return_requests",
        "payouts",
        "wallet_transactions",
        "wallets",
        "referrals",
        "coupon_redemptions",
        "order_lines",
        "orders",
        "coupons",
        "policy_settings",
        "product_variants",
        "products",
        "session_tokens",
        "influencers",
        "users",
    ):
        op.drop_table(table)
