import re

import pytest

import receipts
from models import Receipt, set_setting


def _receipt(user_id, amount):
    return receipts.create_receipt({
        'user_id': user_id,
        'member_id': 'RF-123456',
        'customer_name': 'Ana Customer',
        'membership_type': 'Cardio Training',
        'amount': amount,
        'payment_method': 'Cash',
        'transaction_id': f'TX-{amount}',
        'total_amount': amount,
    })


def test_receipt_number_format():
    assert re.fullmatch(r'RF-\d{13}-\d{1,3}', receipts.generate_receipt_number())


def test_sixth_receipt_evicts_oldest(clock):
    for amount in range(1, 7):
        _receipt('u1', amount)
        clock.advance(minutes=1)
    _receipt('u2', 99)

    kept = receipts.get_user_receipts('u1')
    assert len(kept) == receipts.MAX_RECEIPTS_PER_USER
    assert [r.amount for r in kept] == [6, 5, 4, 3, 2]
    assert Receipt.query.filter_by(user_id='u2').count() == 1


def test_unknown_receipt_fields_rejected():
    with pytest.raises(ValueError):
        receipts.create_receipt({'user_id': 'u1', 'colour': 'red'})
    with pytest.raises(ValueError):
        receipts.create_receipt({'amount': 10})


def test_receipt_stats(clock):
    _receipt('u1', 100)
    clock.advance(days=1)
    _receipt('u1', 250)
    stats = receipts.get_user_receipt_stats('u1')
    assert stats['total_paid'] == 350
    assert stats['total_receipts'] == 2
    assert stats['last_payment']['amount'] == 250
    assert stats['last_payment_date'] == clock.current.isoformat()


def test_receipt_carries_gym_details():
    set_setting('gym_name', 'Iron Temple')
    r = _receipt('u1', 10)
    assert r.gym_name == 'Iron Temple'
    assert r.gym_phone


def test_receipt_pdf():
    r = _receipt('u1', 5000)
    data, filename = receipts.build_receipt_pdf(r)
    assert data.startswith(b'%PDF')
    assert filename == f"receipt_{r.receipt_number}.pdf"
