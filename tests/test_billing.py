import re
from datetime import datetime

import pytest

import billing
from models import Payment


@pytest.mark.parametrize('price,reg,custom,disc,amount,expected', [
    (5000, False, 5000, False, 0, 5000),
    (5000, True, 5000, False, 0, 10000),
    (7500, True, 3000, True, 500, 10000),
    (5000, False, 5000, True, 1000, 4000),
    (500, False, 5000, True, 900, 0),
])
def test_compute_total(price, reg, custom, disc, amount, expected):
    assert billing.compute_total(price, reg, custom, disc, amount) == expected


def test_registration_fee_ignored_when_not_charged():
    assert billing.compute_total(5000, False, 99999) == 5000


def test_validate_charges_rejects_bad_discounts():
    with pytest.raises(ValueError):
        billing.validate_charges(5000, False, 5000, True, -1)
    with pytest.raises(ValueError):
        billing.validate_charges(5000, True, 1000, True, 6001)
    billing.validate_charges(5000, True, 1000, True, 6000)


def test_validate_charges_rejects_negative_registration_fee():
    with pytest.raises(ValueError):
        billing.validate_charges(5000, True, -5, False, 0)


def test_plan_lookup_by_id_and_name():
    assert billing.get_plan('combo').name == 'Strength + Cardio'
    assert billing.get_plan('Cardio Training').id == 'cardio'
    assert billing.get_plan('yoga') is None
    assert billing.plan_duration_days('visitor') == 1
    assert billing.plan_duration_days('unknown') == 30


def test_period_fields():
    fields = billing.period_fields(datetime(2026, 11, 3))
    assert fields == {'month': '2026-11', 'year': 2026, 'month_name': 'November', 'quarter': 'Q4'}
    assert billing.period_fields(datetime(2026, 3, 31))['quarter'] == 'Q1'


def test_transaction_id_format():
    tx = billing.generate_transaction_id()
    assert re.fullmatch(r'ADMIN\d{13}[a-z0-9]{9}', tx)


def test_unknown_payment_fields_rejected():
    with pytest.raises(ValueError):
        billing.add_payment_record({'uid': 'x', 'amount': 10, 'bogus': 1})


def test_payment_with_retention_gets_period_and_expiry(clock):
    p = billing.add_payment_record_with_retention({'uid': 'u1', 'amount': 5000, 'plan_type': 'Cardio Training'})
    assert p.payment_month == '2026-03'
    assert p.payment_quarter == 'Q1'
    assert p.payment_month_name == 'March'
    assert (p.retention_expiry_date - p.created_at).days == billing.PAYMENT_RETENTION_DAYS
    assert p.is_archived is False


def test_archive_then_cleanup(clock):
    billing.add_payment_record_with_retention({'uid': 'u1', 'amount': 100})
    clock.advance(days=30)
    billing.add_payment_record_with_retention({'uid': 'u1', 'amount': 200})

    clock.advance(days=61)
    assert billing.archive_expired_payments() == 1
    assert [p.amount for p in billing.get_active_payment_records('u1')] == [200]

    # archived rows survive until the purge window has passed
    clock.advance(days=billing.ARCHIVE_PURGE_DAYS - 1)
    assert billing.cleanup_archived_payments() == 0
    clock.advance(days=1)
    assert billing.cleanup_archived_payments() == 1
    assert Payment.query.count() == 1


def test_anonymize_user_payments(clock):
    billing.add_payment_record_with_retention({'uid': 'u9', 'amount': 100, 'user_email': 'a@b.c',
                                               'user_name': 'A'})
    assert billing.anonymize_user_payments('u9', 'admin-1') == 1
    p = Payment.query.one()
    assert p.uid is None and p.user_email is None and p.user_name is None
    assert p.original_user_id == 'u9'
    assert p.is_anonymized is True
    assert p.deleted_by == 'admin-1'
