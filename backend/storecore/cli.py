# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# Commands Legend (run from the backend directory):
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create an admin, a customer, a few products and the SAVE20 coupon.
#
# - python -m flask users create --name "Asha" --email asha@example.com [--admin]
# - python -m flask users list
# - python -m flask users token --email asha@example.com
#   Mint a bearer session token (login itself happens upstream).
# - python -m flask users revoke --email asha@example.com   (or --token <token>)
# - python -m flask users make-influencer --email asha@example.com --username asha [--approve] [--kyc]
#
# - python -m flask referrals expire
#   Expire unconverted referrals past their expiry date.
# - python -m flask referrals set-tier influencer 3 gold --actor-email admin@example.com
# - python -m flask referrals set-rate 3 900 --actor-email admin@example.com
#   Pin influencer 3 at 9% commission (omit the rate to clear it).
#
# - python -m flask ledger verify
#   Recompute every wallet from its ledger; exits 1 on any mismatch.
# - python -m flask ledger retry-refunds
#   Re-attempt gateway refunds left pending after cancellation.
#
# - python -m flask coupons list
# - python -m flask coupons create --code SAVE20 --name "20% off" --type percentage --value 2000

import sys

import click
from flask.cli import with_appcontext

from .errors import StoreError
from .extensions import db
from .models import Coupon, Influencer, Product, User
from .services import coupon_service, order_service, referral_service, session_service, wallet_service
from .time_utils import to_utc_z, utcnow


def _user_by_email(email: str) -> User | None:
    return db.session.query(User).filter_by(email=email.strip().lower()).first()


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Idempotent demo data: admin, customer, products, SAVE20."""
    created = []
    for name, email, is_admin in (("Admin", "admin@example.com", True), ("Demo Customer", "customer@example.com", False)):
        if not _user_by_email(email):
            db.session.add(User(
                name=name,
                email=email,
                is_admin=is_admin,
                referral_code=referral_service.generate_referral_code(),
            ))
            created.append(email)

    for sku, name, price, stock in (
        ("TEE-001", "Cotton Tee", 49900, 50),
        ("KURTA-001", "Linen Kurta", 129900, 20),
        ("SAREE-001", "Silk Saree", 499900, 5),
    ):
        if not db.session.query(Product).filter_by(sku=sku).first():
            db.session.add(Product(sku=sku, name=name, price_paise=price, stock=stock, category_id=1))
            created.append(sku)

    if not db.session.query(Coupon).filter_by(code="SAVE20").first():
        db.session.add(Coupon(
            code="SAVE20",
            name="20% off",
            discount_type="percentage",
            discount_value=2000,
            min_order_paise=0,
            used_count=0,
        ))
        created.append("SAVE20")

    db.session.commit()
    click.echo(f"PASS Seeded: {', '.join(created) if created else 'nothing new'}")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--admin', 'is_admin', is_flag=True, help='Grant admin access')
@with_appcontext
def create_user_cli(name, email, is_admin):
    email = email.strip().lower()
    if _user_by_email(email):
        click.echo(f"FAIL User {email} already exists")
        return
    user = User(
        name=name.strip(),
        email=email,
        is_admin=is_admin,
        referral_code=referral_service.generate_referral_code(),
    )
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.id}: {email} (referral code {user.referral_code})")


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found")
        return
    for u in users:
        flags = []
        if u.is_admin:
            flags.append("admin")
        if not u.is_active:
            flags.append("inactive")
        click.echo(f"{u.id:>5}  {u.email:<32} tier={u.tier:<9} code={u.referral_code or '-'} {' '.join(flags)}")


@users_group.command('token')
@click.option('--email', prompt=True, help='Email address')
@with_appcontext
def issue_token_cli(email):
    """Mint a bearer token for an already-verified user."""
    user = _user_by_email(email)
    if not user:
        click.echo(f"FAIL User {email} not found")
        return
    try:
        session, token = session_service.create_session(user.id)
    except StoreError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(token)
    click.echo(f"expires {to_utc_z(session.expires_at)}", err=True)


@users_group.command('revoke')
@click.option('--email', default=None, help='Revoke every session of this user')
@click.option('--token', default=None, help='Revoke a single bearer token')
@with_appcontext
def revoke_sessions_cli(email, token):
    if bool(email) == bool(token):
        click.echo("FAIL Pass exactly one of --email or --token")
        return
    if token:
        if session_service.revoke_session(token):
            click.echo("PASS Token revoked")
        else:
            click.echo("FAIL Token not found or already revoked")
        return
    user = _user_by_email(email)
    if not user:
        click.echo(f"FAIL User {email} not found")
        return
    count = session_service.revoke_all_user_sessions(user.id)
    click.echo(f"PASS Revoked {count} sessions for {user.email}")


@users_group.command('make-influencer')
@click.option('--email', prompt=True)
@click.option('--username', prompt=True)
@click.option('--approve', is_flag=True, help='Approve immediately')
@click.option('--kyc', is_flag=True, help='Mark KYC verified')
@with_appcontext
def make_influencer_cli(email, username, approve, kyc):
    user = _user_by_email(email)
    if not user:
        click.echo(f"FAIL User {email} not found")
        return
    if db.session.query(Influencer).filter_by(user_id=user.id).first():
        click.echo(f"FAIL {email} is already an influencer")
        return
    now = utcnow()
    influencer = Influencer(
        user_id=user.id,
        name=user.name,
        email=user.email,
        username=username.strip().lower(),
        referral_code=referral_service.generate_referral_code(),
        status="approved" if approve else "pending",
        approved_at=now if approve else None,
        kyc_verified=kyc,
        kyc_verified_at=now if kyc else None,
    )
    db.session.add(influencer)
    db.session.commit()
    click.echo(f"PASS Influencer {influencer.id} ({influencer.status}) code {influencer.referral_code}")


@click.group('referrals')
def referrals_group():
    """Referral maintenance commands."""


@referrals_group.command('expire')
@with_appcontext
def expire_referrals_cli():
    count = referral_service.expire_referrals()
    click.echo(f"Expired {count} referrals.")


@referrals_group.command('set-tier')
@click.argument('referrer_type', type=click.Choice(['user', 'influencer']))
@click.argument('referrer_id', type=int)
@click.argument('tier')
@click.option('--actor-email', required=True, help='Admin performing the change')
@with_appcontext
def set_tier_cli(referrer_type, referrer_id, tier, actor_email):
    actor = _user_by_email(actor_email)
    if not actor or not actor.is_admin:
        click.echo(f"FAIL {actor_email} is not an admin")
        return
    try:
        referral_service.assign_tier(referrer_type, referrer_id, tier, actor_user_id=actor.id)
    except StoreError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS {referrer_type} {referrer_id} is now {tier}")


@referrals_group.command('set-rate')
@click.argument('influencer_id', type=int)
@click.argument('rate_bps', type=int, required=False)
@click.option('--actor-email', required=True, help='Admin performing the change')
@with_appcontext
def set_rate_cli(influencer_id, rate_bps, actor_email):
    """Pin an influencer's commission rate; omit RATE_BPS to use the tier rate."""
    actor = _user_by_email(actor_email)
    if not actor or not actor.is_admin:
        click.echo(f"FAIL {actor_email} is not an admin")
        return
    try:
        referral_service.set_commission_rate(influencer_id, rate_bps, actor_user_id=actor.id)
    except StoreError as e:
        click.echo(f"FAIL {e.message}")
        return
    rate = f"{rate_bps} bps" if rate_bps is not None else "the tier rate"
    click.echo(f"PASS influencer {influencer_id} now earns {rate}")


@click.group('ledger')
def ledger_group():
    """Wallet ledger inspection commands."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger_cli():
    """Recompute every wallet from its ledger. Never corrects anything."""
    results = wallet_service.verify_all_wallets()
    failures = [r for r in results if not r["ok"]]
    for r in failures:
        click.echo(f"FAIL wallet {r['wallet_id']}: {r['error']} {r['details'].get('mismatches')}")
    click.echo(f"Checked {len(results)} wallets, {len(failures)} mismatched.")
    if failures:
        sys.exit(1)


@ledger_group.command('retry-refunds')
@with_appcontext
def retry_refunds_cli():
    orders = order_service.retry_pending_refunds()
    done = [o for o in orders if o.refund_status == "completed"]
    click.echo(f"Retried {len(orders)} refunds, {len(done)} completed.")


@click.group('coupons')
def coupons_group():
    """Coupon commands."""


@coupons_group.command('list')
@with_appcontext
def list_coupons_cli():
    for c in coupon_service.list_coupons():
        limit = c.usage_limit if c.usage_limit is not None else "inf"
        state = "active" if c.is_active else "inactive"
        click.echo(f"{c.id:>4}  {c.code:<16} {c.discount_type:<10} {c.discount_value:>8}  used {c.used_count}/{limit}  {state}")


@coupons_group.command('create')
@click.option('--code', required=True)
@click.option('--name', required=True)
@click.option('--type', 'discount_type', type=click.Choice(['percentage', 'fixed']), required=True)
@click.option('--value', type=int, required=True, help='Basis points for percentage, paise for fixed')
@click.option('--min-order', type=int, default=None, help='Minimum order (paise)')
@click.option('--max-discount', type=int, default=None, help='Discount cap (paise)')
@click.option('--usage-limit', type=int, default=None)
@with_appcontext
def create_coupon_cli(code, name, discount_type, value, min_order, max_discount, usage_limit):
    payload = {"code": code, "name": name, "discount_type": discount_type, "discount_value": value}
    if min_order is not None:
        payload["min_order_paise"] = min_order
    if max_discount is not None:
        payload["max_discount_paise"] = max_discount
    if usage_limit is not None:
        payload["usage_limit"] = usage_limit
    try:
        coupon = coupon_service.create_coupon(payload)
    except StoreError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Created coupon {coupon.code} ({coupon.id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(referrals_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(coupons_group)
