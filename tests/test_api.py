from io import BytesIO

import pandas as pd

import billing
import cloudinary_client
import memberships
import users
from conftest import login_as


def test_signup_login_me_logout(client):
    res = client.post('/api/auth/signup', json={'email': 'new@example.com', 'password': 'secret1',
                                                'name': 'New Member'})
    assert res.status_code == 201
    assert res.get_json()['user']['member_id'].startswith('RF-')

    client.post('/api/auth/logout')
    assert client.get('/api/auth/me').status_code == 401

    res = client.post('/api/auth/login', json={'email': 'new@example.com', 'password': 'bad'})
    assert res.status_code == 401
    res = client.post('/api/auth/login', json={'email': 'new@example.com', 'password': 'secret1'})
    assert res.status_code == 200
    assert client.get('/api/auth/me').get_json()['user']['email'] == 'new@example.com'


def test_signup_validation_error_is_json(client):
    res = client.post('/api/auth/signup', json={'email': 'x@example.com', 'password': '1', 'name': 'X'})
    assert res.status_code == 400
    assert res.get_json() == {'ok': False, 'error': 'Password must be at least 6 characters'}


def test_security_headers(client):
    res = client.get('/healthz')
    assert res.headers['X-Frame-Options'] == 'DENY'
    assert res.headers['X-Content-Type-Options'] == 'nosniff'


def test_customer_cannot_use_staff_routes(client, customer):
    login_as(client, customer)
    assert client.get('/api/users').status_code == 403
    assert client.post('/api/expenses', json={}).status_code == 403
    assert client.get(f'/api/users/{customer.uid}').status_code == 200


def test_customer_cannot_read_other_users(client, customer, receptionist):
    other = users.create_user('bob@example.com', 'secret1', 'Bob')
    login_as(client, customer)
    assert client.get(f'/api/users/{other.uid}').status_code == 403
    assert client.get(f'/api/receipts?user_id={other.uid}').status_code == 403


def test_assign_membership_via_api(client, clock, customer, receptionist):
    login_as(client, receptionist)
    res = client.post(f'/api/users/{customer.uid}/membership',
                      json={'plan': 'combo', 'registration_fee': True, 'custom_registration_fee': 1000,
                            'discount': True, 'discount_amount': 500})
    body = res.get_json()
    assert res.status_code == 200, body
    assert body['action'] == 'created'
    assert body['total'] == 8000
    assert body['payment']['amount'] == 8000

    clock.advance(days=3)
    res = client.post(f'/api/users/{customer.uid}/membership', json={'plan': 'cardio'})
    assert res.get_json()['action'] == 'updated'

    res = client.post(f'/api/users/{customer.uid}/membership', json={'plan': 'pilates'})
    assert res.status_code == 400


def test_request_approve_flow(client, clock, customer, admin):
    login_as(client, customer)
    res = client.post('/api/membership-requests', json={'plan_type': 'cardio', 'payment_method': 'Cash'})
    assert res.status_code == 201
    request_id = res.get_json()['request']['id']
    assert len(client.get('/api/membership-requests').get_json()['requests']) == 1

    login_as(client, admin)
    res = client.post(f'/api/membership-requests/{request_id}/reject', json={})
    assert res.status_code == 400
    res = client.post(f'/api/membership-requests/{request_id}/approve', json={})
    assert res.get_json()['request']['status'] == 'active'
    assert client.post('/api/membership-requests/999/approve', json={}).status_code == 404

    login_as(client, customer)
    receipts = client.get('/api/receipts').get_json()['receipts']
    assert len(receipts) == 1
    pdf = client.get(f"/api/receipts/{receipts[0]['id']}/pdf")
    assert pdf.status_code == 200
    assert pdf.mimetype == 'application/pdf'
    assert pdf.data.startswith(b'%PDF')


def test_visitor_and_reports(client, clock, admin):
    login_as(client, admin)
    assert client.post('/api/visitors', json={'name': 'Walk In', 'phone': '0300'}).status_code == 201
    res = client.post('/api/expenses', json={'title': 'Mop', 'amount': 200, 'category': 'Maintenance'})
    assert res.status_code == 201

    report = client.get('/api/reports/monthly?month=2026-03').get_json()['report']
    assert report['visitor_revenue'] == 500
    assert report['net_revenue'] == 300
    stats = client.get('/api/reports/dashboard').get_json()['stats']
    assert stats['active_visitors'] == 1


def test_payments_csv_export(client, clock, customer, admin):
    memberships.assign_membership(customer.uid, 'cardio')
    memberships.add_visitor('Walk In', '0300')
    login_as(client, admin)
    listed = client.get('/api/payments?month=2026-03').get_json()['payments']
    res = client.get('/api/export/payments.csv?month=2026-03')
    assert res.status_code == 200
    assert res.mimetype == 'text/csv'
    df = pd.read_csv(BytesIO(res.data))
    assert len(df) == len(listed) == 2


def test_payment_list_hides_archived(client, clock, customer, admin):
    memberships.assign_membership(customer.uid, 'cardio')
    clock.advance(days=91)
    assert billing.archive_expired_payments() == 1
    memberships.add_visitor('Walk In', '0300')
    login_as(client, admin)

    listed = client.get('/api/payments').get_json()['payments']
    assert [p['revenue_category'] for p in listed] == ['visitor']
    assert client.get(f'/api/payments?uid={customer.uid}').get_json()['payments'] == []
    assert len(client.get('/api/payments?include_archived=1').get_json()['payments']) == 2


def test_photo_upload_returns_sized_urls(client, customer, monkeypatch):
    monkeypatch.setattr(cloudinary_client, 'upload_image', lambda f, name, folder=None: {
        'secure_url': 'https://res.cloudinary.com/demo/image/upload/v1/profile-images/a.jpg',
        'public_id': 'profile-images/a',
    })
    login_as(client, customer)
    res = client.post(f'/api/users/{customer.uid}/photo', data={'photo': (BytesIO(b'img'), 'me.jpg')},
                      content_type='multipart/form-data')
    body = res.get_json()
    assert res.status_code == 200, body
    assert body['display_url'] == ('https://res.cloudinary.com/demo/image/upload/'
                                   'w_200,h_200,c_fill,g_face,q_auto,f_auto/v1/profile-images/a.jpg')
    assert '/w_150,h_150,c_fill' in body['thumbnail_url']


def test_expense_crud(client, clock, admin):
    login_as(client, admin)
    expense_id = client.post('/api/expenses', json={'title': 'Rent', 'amount': 1000,
                                                    'category': 'Other'}).get_json()['expense']['id']
    res = client.put(f'/api/expenses/{expense_id}', json={'amount': 1500})
    assert res.get_json()['expense']['amount'] == 1500
    summary = client.get('/api/expenses/summary?month=2026-03').get_json()['summary']
    assert summary['total'] == 1500
    assert client.delete(f'/api/expenses/{expense_id}').status_code == 200
    assert client.delete(f'/api/expenses/{expense_id}').status_code == 404


def test_delete_user_requires_admin(client, customer, receptionist, admin):
    uid = customer.uid
    login_as(client, receptionist)
    assert client.delete(f'/api/users/{uid}').status_code == 403
    login_as(client, admin)
    res = client.delete(f'/api/users/{uid}')
    assert res.get_json() == {'ok': True, 'memberships_removed': 0, 'payments_anonymized': 0}
    assert client.get(f'/api/users/{uid}').status_code == 404


def test_attendance_endpoints(client, clock, customer, receptionist):
    login_as(client, customer)
    assert client.post('/api/attendance', json={}).status_code == 201
    assert client.post('/api/attendance', json={}).status_code == 200
    login_as(client, receptionist)
    rows = client.get('/api/attendance?from=2026-03-10&to=2026-03-10').get_json()['attendance']
    assert len(rows) == 1
    counts = client.get('/api/attendance/daily?from=2026-03-01&to=2026-03-31').get_json()['counts']
    assert counts == {'2026-03-10': 1}
    assert client.get('/api/attendance?from=10-03-2026').status_code == 400


def test_settings_admin_only(client, admin, receptionist):
    login_as(client, receptionist)
    assert client.get('/api/settings').status_code == 403
    login_as(client, admin)
    assert client.put('/api/settings', json={'gym_name': 'Iron Temple'}).status_code == 200
    assert client.get('/api/settings').get_json()['settings']['gym_name'] == 'Iron Temple'
    assert client.put('/api/settings', json={'theme': 'dark'}).status_code == 400
    assert client.get('/api/audit/verify').get_json()['valid'] is True
