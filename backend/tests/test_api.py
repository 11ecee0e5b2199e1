"""
HTTP surface tests: auth guards, JSON envelopes and error codes.

Business rules are covered at the service layer; these tests check that
routes wire requests through to services and render results correctly.
"""

from storecore.models import AuditEvent, Order

from conftest import ADDRESS, COURIER_SECRET, auth_headers, get_auth_token, sign


def _order_body(product, quantity=1, **extra):
    body = {
        "items": [{"product_id": product.id, "quantity": quantity}],
        "shipping_address": dict(ADDRESS),
        "payment_method": "cod",
    }
    body.update(extra)
    return body


class TestAuth:
    def test_missing_token_returns_401(self, client, db_session):
        response = client.get('/api/orders')

        assert response.status_code == 401
        assert response.get_json()['code'] == 'AUTH_REQUIRED'

    def test_unknown_token_returns_401(self, client, db_session):
        response = client.get('/api/orders', headers=auth_headers('not-a-real-token'))

        assert response.status_code == 401

    def test_admin_route_rejects_customer(self, client, customer):
        token = get_auth_token(customer)

        response = client.get('/api/orders/admin', headers=auth_headers(token))

        assert response.status_code == 403
        assert response.get_json()['code'] == 'PERMISSION_DENIED'

    def test_admin_route_allows_admin(self, client, admin):
        token = get_auth_token(admin)

        response = client.get('/api/orders/admin', headers=auth_headers(token))

        assert response.status_code == 200
        assert response.get_json() == {"orders": [], "total": 0}


class TestOrderRoutes:
    def test_place_order(self, client, customer, make_product):
        product = make_product(price_paise=50000)
        token = get_auth_token(customer)

        response = client.post('/api/orders', json=_order_body(product, 2), headers=auth_headers(token))

        assert response.status_code == 201
        order = response.get_json()['order']
        assert order['order_number'] == 'SBV-000001'
        assert order['subtotal_paise'] == 100000
        assert order['shipping_paise'] == 0
        assert order['total_paise'] == 100000
        assert order['items'][0]['quantity'] == 2

    def test_idempotency_key_header_replays_order(self, client, db_session, customer, make_product):
        product = make_product()
        headers = {**auth_headers(get_auth_token(customer)), 'Idempotency-Key': 'client-123'}

        first = client.post('/api/orders', json=_order_body(product), headers=headers)
        second = client.post('/api/orders', json=_order_body(product), headers=headers)

        assert first.get_json()['order']['id'] == second.get_json()['order']['id']
        assert db_session.query(Order).count() == 1

    def test_validation_error_envelope(self, client, customer):
        token = get_auth_token(customer)

        response = client.post('/api/orders', json={"items": []}, headers=auth_headers(token))

        assert response.status_code == 400
        body = response.get_json()
        assert body['code'] == 'VALIDATION_ERROR'
        assert body['error']

    def test_other_users_order_is_not_found(self, client, make_user, customer, make_product):
        product = make_product()
        token = get_auth_token(customer)
        placed = client.post('/api/orders', json=_order_body(product), headers=auth_headers(token))
        order_id = placed.get_json()['order']['id']
        stranger = make_user("Stranger")

        response = client.get(f'/api/orders/{order_id}', headers=auth_headers(get_auth_token(stranger)))

        assert response.status_code == 404

    def test_cancel_route(self, client, customer, make_product):
        product = make_product()
        token = get_auth_token(customer)
        placed = client.post('/api/orders', json=_order_body(product), headers=auth_headers(token))
        order_id = placed.get_json()['order']['id']

        response = client.post(
            f'/api/orders/{order_id}/cancel',
            json={"reason": "Ordered by mistake"},
            headers=auth_headers(token),
        )

        assert response.status_code == 200
        assert response.get_json()['order']['order_status'] == 'cancelled'

    def test_admin_status_update(self, client, admin, customer, make_product):
        product = make_product()
        placed = client.post(
            '/api/orders', json=_order_body(product), headers=auth_headers(get_auth_token(customer))
        )
        order_id = placed.get_json()['order']['id']
        admin_headers = auth_headers(get_auth_token(admin))

        ok = client.post(f'/api/orders/{order_id}/status', json={"status": "confirmed"}, headers=admin_headers)
        skipped = client.post(f'/api/orders/{order_id}/status', json={"status": "delivered"}, headers=admin_headers)

        assert ok.status_code == 200
        assert ok.get_json()['order']['order_status'] == 'confirmed'
        assert skipped.status_code == 409
        assert skipped.get_json()['code'] == 'STATE_CONFLICT'


class TestCallbacks:
    def test_confirm_payment(self, client, customer, make_product):
        product = make_product()
        placed = client.post(
            '/api/orders',
            json=_order_body(product, payment_method="online"),
            headers=auth_headers(get_auth_token(customer)),
        )
        number = placed.get_json()['order']['order_number']

        response = client.post('/api/payments/confirm', json={
            "order_number": number,
            "gateway_payment_id": "pay_api_1",
            "signature": sign(number, "pay_api_1"),
        })

        assert response.status_code == 200
        order = response.get_json()['order']
        assert order['payment_status'] == 'paid'
        assert order['order_status'] == 'confirmed'

    def test_confirm_payment_rejects_bad_signature(self, client, customer, make_product):
        product = make_product()
        placed = client.post(
            '/api/orders',
            json=_order_body(product, payment_method="online"),
            headers=auth_headers(get_auth_token(customer)),
        )
        number = placed.get_json()['order']['order_number']

        response = client.post('/api/payments/confirm', json={
            "order_number": number,
            "gateway_payment_id": "pay_api_1",
            "signature": "deadbeef",
        })

        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_SIGNATURE'

    def test_courier_webhook_requires_token(self, client, customer, make_product):
        product = make_product()
        placed = client.post(
            '/api/orders', json=_order_body(product), headers=auth_headers(get_auth_token(customer))
        )
        number = placed.get_json()['order']['order_number']

        response = client.post(
            '/api/payments/webhooks/courier',
            json={"event_id": "evt_9", "order_number": number, "status": "shipped"},
            headers={'X-Courier-Token': 'wrong'},
        )

        assert response.status_code == 401
        assert response.get_json()['code'] == 'AUTH_REQUIRED'

    def test_courier_webhook_advances_order(self, client, db_session, admin, customer, make_product):
        product = make_product()
        placed = client.post(
            '/api/orders', json=_order_body(product), headers=auth_headers(get_auth_token(customer))
        )
        body = placed.get_json()['order']
        admin_headers = auth_headers(get_auth_token(admin))
        for status in ("confirmed", "processing"):
            client.post(f"/api/orders/{body['id']}/status", json={"status": status}, headers=admin_headers)

        payload = {
            "event_id": "evt_10",
            "order_number": body['order_number'],
            "status": "shipped",
            "tracking": {"tracking_number": "AWB900", "courier_name": "Delhivery"},
        }
        first = client.post('/api/payments/webhooks/courier', json=payload, headers={'X-Courier-Token': COURIER_SECRET})
        replay = client.post('/api/payments/webhooks/courier', json=payload, headers={'X-Courier-Token': COURIER_SECRET})

        assert first.status_code == 200
        assert first.get_json()['order']['tracking_number'] == 'AWB900'
        assert replay.status_code == 200
        shipped = db_session.query(AuditEvent).filter_by(
            event_type="order.status_changed", order_id=body['id']
        ).count()
        assert shipped == 3


class TestWalletRoutes:
    def test_summary_for_new_user_is_zero(self, client, customer):
        response = client.get('/api/wallet', headers=auth_headers(get_auth_token(customer)))

        assert response.status_code == 200
        wallet = response.get_json()['wallet']
        assert wallet['balance_paise'] == 0
        assert wallet['wallet_id'] is None

    def test_admin_bonus_shows_in_history(self, client, admin, customer):
        admin_headers = auth_headers(get_auth_token(admin))

        granted = client.post('/api/wallet/admin/bonus', json={
            "owner_type": "user",
            "owner_id": customer.id,
            "amount_paise": 2500,
            "reason": "Festival bonus",
        }, headers=admin_headers)
        history = client.get('/api/wallet/transactions', headers=auth_headers(get_auth_token(customer)))

        assert granted.status_code == 201
        rows = history.get_json()['transactions']
        assert [r['amount_paise'] for r in rows] == [2500]
        assert history.get_json()['total'] == 1

    def test_admin_verify_reports_clean_ledger(self, client, admin, customer):
        admin_headers = auth_headers(get_auth_token(admin))
        client.post('/api/wallet/admin/adjust', json={
            "owner_type": "user",
            "owner_id": customer.id,
            "direction": "credit",
            "amount_paise": 1000,
            "reason": "Goodwill",
        }, headers=admin_headers)

        response = client.get('/api/wallet/admin/verify', headers=admin_headers)

        assert response.status_code == 200
        assert response.get_json()['failures'] == []
        assert response.get_json()['checked'] == 1


class TestPolicyRoutes:
    def test_get_policy(self, client, admin):
        response = client.get('/api/admin/policy', headers=auth_headers(get_auth_token(admin)))

        assert response.status_code == 200
        assert response.get_json()['policy']['returns.window_hours'] == 72

    def test_update_policy_is_audited(self, client, admin):
        headers = auth_headers(get_auth_token(admin))

        updated = client.put('/api/admin/policy', json={"returns.window_hours": 48}, headers=headers)
        audit = client.get('/api/admin/audit?category=policy', headers=headers)

        assert updated.status_code == 200
        assert updated.get_json()['policy']['returns.window_hours'] == 48
        assert audit.get_json()['total'] >= 1

    def test_unknown_policy_key_rejected(self, client, admin):
        response = client.put(
            '/api/admin/policy',
            json={"returns.window_days": 3},
            headers=auth_headers(get_auth_token(admin)),
        )

        assert response.status_code == 400


class TestReferralRoutes:
    def test_admin_pins_influencer_rate(self, client, admin, make_influencer):
        influencer = make_influencer()
        headers = auth_headers(get_auth_token(admin))

        pinned = client.post(f'/api/referrals/admin/influencers/{influencer.id}/rate', json={"rate_bps": 900}, headers=headers)
        cleared = client.post(f'/api/referrals/admin/influencers/{influencer.id}/rate', json={"rate_bps": None}, headers=headers)
        missing = client.post(f'/api/referrals/admin/influencers/{influencer.id}/rate', json={}, headers=headers)

        assert pinned.status_code == 200
        assert pinned.get_json()['influencer']['commission_rate_bps'] == 900
        assert cleared.get_json()['influencer']['commission_rate_bps'] is None
        assert missing.status_code == 400


def test_health(client, db_session):
    response = client.get('/api/health')

    assert response.status_code == 200
    assert response.get_json()['database'] == 'ok'


def test_unknown_api_path_returns_json_404(client, db_session):
    response = client.get('/api/nope')

    assert response.status_code == 404
    assert response.get_json()['code'] == 'NOT_FOUND'


def test_cors_headers_for_known_origin(client, db_session):
    allowed = client.get('/api/health', headers={'Origin': 'http://localhost:5173'})
    other = client.get('/api/health', headers={'Origin': 'https://evil.example'})

    assert allowed.headers['Access-Control-Allow-Origin'] == 'http://localhost:5173'
    assert 'Access-Control-Allow-Origin' not in other.headers
