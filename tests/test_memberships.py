from datetime import datetime, timedelta

import pytest

import billing
import memberships
import receipts
import users
from models import Membership, MembershipRequest, Payment, Receipt, db


def test_days_remaining_rounds_up_and_floors_at_zero():
    now = datetime(2026, 3, 10, 12, 0)
    assert memberships.days_remaining(now + timedelta(days=6, hours=1), now) == 7
    assert memberships.days_remaining(now + timedelta(hours=1), now) == 1
    assert memberships.days_remaining(now - timedelta(days=3), now) == 0
    assert memberships.days_remaining(None, now) == 0


def test_renewal_due_threshold():
    now = datetime(2026, 3, 10, 12, 0)
    assert memberships.is_renewal_due(now + timedelta(days=6), now)
    assert not memberships.is_renewal_due(now + timedelta(days=7), now)


def test_assign_creates_membership_when_none(clock, customer):
    result = memberships.assign_membership(customer.uid, 'strength', registration_fee=True)
    assert result['action'] == 'created'
    m = result['membership']
    assert m.start_date == clock.current
    assert m.end_date == clock.current + timedelta(days=30)
    assert m.total_amount == 10000
    assert m.next_renewal_reminder == clock.current + timedelta(days=25)
    assert Payment.query.filter_by(uid=customer.uid).count() == 1
    assert Receipt.query.filter_by(user_id=customer.uid).count() == 1
    user = users.get_user(customer.uid)
    assert user.membership_status == 'active'
    assert user.membership_expiry_date == m.end_date


def test_edit_near_expiry_renews(clock, customer):
    memberships.assign_membership(customer.uid, 'strength')
    clock.advance(days=25)

    result = memberships.assign_membership(customer.uid, 'combo', discount=True, discount_amount=500)

    assert result['action'] == 'renewed'
    m = result['membership']
    assert m.start_date == clock.current
    assert m.end_date == clock.current + timedelta(days=30)
    assert m.renewal_count == 1
    assert m.amount == 7000
    assert Membership.query.filter_by(uid=customer.uid).count() == 1
    payments = Payment.query.filter_by(uid=customer.uid).order_by(Payment.created_at).all()
    assert [p.amount for p in payments] == [5000, 7000]
    assert payments[1].transaction_id == m.transaction_id
    assert receipts.latest_receipt_for(customer.uid).total_amount == 7000
    assert users.get_user(customer.uid).membership_expiry_date == m.end_date


def test_edit_with_time_left_updates_in_place(clock, customer):
    first = memberships.assign_membership(customer.uid, 'strength')['membership']
    start, end = first.start_date, first.end_date
    clock.advance(days=10)

    result = memberships.assign_membership(customer.uid, 'combo', registration_fee=True,
                                           custom_registration_fee=2000)

    assert result['action'] == 'updated'
    m = result['membership']
    assert (m.start_date, m.end_date) == (start, end)
    assert m.renewal_count == 0
    assert m.plan_type == 'Strength + Cardio'
    payment = Payment.query.filter_by(uid=customer.uid).one()
    assert payment.amount == 9500
    assert payment.plan_type == 'Strength + Cardio'
    receipt = Receipt.query.filter_by(user_id=customer.uid).one()
    assert receipt.membership_type == 'Strength + Cardio'
    assert receipt.total_amount == 9500
    user = users.get_user(customer.uid)
    assert user.membership_plan == 'Strength + Cardio'
    assert user.membership_expiry_date == end


def test_expired_membership_is_renewed(clock, customer):
    memberships.assign_membership(customer.uid, 'cardio')
    clock.advance(days=45)
    result = memberships.assign_membership(customer.uid, 'cardio')
    assert result['action'] == 'renewed'
    assert result['membership'].end_date == clock.current + timedelta(days=30)


def test_payment_failure_does_not_undo_renewal(clock, customer, monkeypatch):
    memberships.assign_membership(customer.uid, 'cardio')
    clock.advance(days=28)

    def boom(data):
        raise RuntimeError('db down')

    monkeypatch.setattr(billing, 'add_payment_record_with_retention', boom)
    result = memberships.assign_membership(customer.uid, 'cardio')
    assert result['action'] == 'renewed'
    assert result['payment'] is None
    assert memberships.get_user_membership(customer.uid).renewal_count == 1


def test_assign_rejects_unknown_plan_and_staff(clock, customer, admin):
    with pytest.raises(ValueError):
        memberships.assign_membership(customer.uid, 'yoga')
    with pytest.raises(ValueError):
        memberships.assign_membership(admin.uid, 'cardio')
    with pytest.raises(LookupError):
        memberships.assign_membership('missing', 'cardio')
    with pytest.raises(ValueError):
        memberships.assign_membership(customer.uid, 'cardio', discount=True, discount_amount=6000)


def test_request_approval_creates_records(clock, customer, admin):
    req = memberships.create_membership_request(customer.uid, 'cardio', payment_method='Bank Transfer',
                                                transaction_id='TX-1')
    assert users.get_user(customer.uid).membership_status == 'pending'
    with pytest.raises(ValueError):
        memberships.create_membership_request(customer.uid, 'strength')

    memberships.update_membership_request_status(req.id, 'active', admin.uid)

    assert db.session.get(MembershipRequest, req.id).status == 'active'
    m = memberships.get_user_membership(customer.uid)
    assert m.transaction_id == 'TX-1'
    assert m.end_date == clock.current + timedelta(days=30)
    payment = Payment.query.filter_by(transaction_id='TX-1').one()
    assert payment.approved_by == admin.uid
    assert payment.payment_month == '2026-03'
    assert Receipt.query.filter_by(user_id=customer.uid).count() == 1
    assert users.get_user(customer.uid).membership_status == 'active'


def test_request_rejection(clock, customer, admin):
    req = memberships.create_membership_request(customer.uid, 'cardio')
    memberships.update_membership_request_status(req.id, 'rejected', admin.uid, rejection_reason='No payment')
    req = db.session.get(MembershipRequest, req.id)
    assert req.status == 'rejected'
    assert req.rejection_reason == 'No payment'
    assert users.get_user(customer.uid).membership_status == 'no_plan'
    assert Membership.query.count() == 0
    with pytest.raises(ValueError):
        memberships.update_membership_request_status(req.id, 'active', admin.uid)
    with pytest.raises(ValueError):
        memberships.update_membership_request_status(req.id, 'pending', admin.uid)
    assert db.session.get(MembershipRequest, req.id).status == 'rejected'
    assert users.get_user(customer.uid).membership_status == 'no_plan'


def test_add_visitor(clock, receptionist):
    v = memberships.add_visitor('Walk In', '0300', actor_uid=receptionist.uid)
    assert v.is_visitor and v.uid is None
    assert v.end_date == clock.current + timedelta(days=1)
    assert v.visitor_month == '2026-03'
    payment = Payment.query.one()
    assert payment.revenue_category == 'visitor'
    assert payment.amount == 500
    assert payment.user_name == 'Walk In'
    with pytest.raises(ValueError):
        memberships.add_visitor('  ', '0300')


def test_status_sweep_expires_then_deactivates(clock, customer):
    memberships.assign_membership(customer.uid, 'cardio')
    clock.advance(days=31)
    result = memberships.check_membership_statuses()
    assert result['expired'] == 1
    user = users.get_user(customer.uid)
    assert user.membership_status == 'expired'
    assert user.status == 'active'
    assert memberships.get_user_membership(customer.uid).status == 'expired'

    clock.advance(days=7)
    assert memberships.check_membership_statuses()['inactive'] == 1
    user = users.get_user(customer.uid)
    assert user.status == 'inactive'
    assert user.status_updated_by == 'system'


def test_renewal_reactivates_swept_account(clock, customer, receptionist):
    memberships.assign_membership(customer.uid, 'cardio')
    clock.advance(days=40)
    memberships.check_membership_statuses()
    with pytest.raises(PermissionError):
        users.authenticate('ana@example.com', 'secret1')

    result = memberships.assign_membership(customer.uid, 'cardio', actor_uid=receptionist.uid)
    assert result['action'] == 'renewed'
    user = users.authenticate('ana@example.com', 'secret1')
    assert user.status == 'active'
    assert user.membership_status == 'active'
    assert user.status_updated_by == receptionist.uid
    assert user.status_updated_at == clock.current


def test_request_approval_reactivates_swept_account(clock, customer, admin):
    memberships.assign_membership(customer.uid, 'cardio')
    clock.advance(days=40)
    memberships.check_membership_statuses()
    assert users.get_user(customer.uid).status == 'inactive'

    req = memberships.create_membership_request(customer.uid, 'strength')
    memberships.update_membership_request_status(req.id, 'active', admin.uid)
    user = users.authenticate('ana@example.com', 'secret1')
    assert user.status == 'active'
    assert user.status_updated_by == admin.uid


def test_expiry_status_classification():
    now = datetime(2026, 3, 10, 12, 0)
    assert memberships.expiry_status(None, now=now)['status'] == 'no_expiry'
    assert memberships.expiry_status(now + timedelta(days=20), now=now)['status'] == 'active'
    assert memberships.expiry_status(now + timedelta(days=5), now=now)['status'] == 'expiring_soon'
    assert memberships.expiry_status(now - timedelta(hours=2), now=now)['status'] == 'expires_today'
    expired = memberships.expiry_status(now - timedelta(days=3), now=now)
    assert expired['status'] == 'expired'
    assert expired['days_since_expiry'] == 3
    assert memberships.expiry_status(now + timedelta(hours=20), True, now)['status'] == 'expiring_soon'
    assert memberships.expiry_status(now + timedelta(days=3), True, now)['status'] == 'active'
