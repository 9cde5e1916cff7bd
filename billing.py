"""
billing.py
Plan catalog, fee arithmetic and payment records (retention + archival).
"""

from __future__ import annotations

import logging
import math
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime, timedelta

from models import Payment, db

logger = logging.getLogger(__name__)

REGISTRATION_FEE = 5000
PAYMENT_RETENTION_DAYS = 90
ARCHIVE_PURGE_DAYS = 180

MONTH_NAMES = ['January', 'February', 'March', 'April', 'May', 'June',
               'July', 'August', 'September', 'October', 'November', 'December']


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    price: float
    duration_days: int
    description: str

    @property
    def is_visitor(self) -> bool:
        return self.id == 'visitor'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'price': self.price,
            'duration_days': self.duration_days,
            'description': self.description,
        }


PLANS = {
    'visitor': Plan('visitor', 'Visitor Trial', 500, 1, 'One-time trial visit'),
    'strength': Plan('strength', 'Strength Training', 5000, 30, 'Build muscle and strength'),
    'cardio': Plan('cardio', 'Cardio Training', 5000, 30, 'Improve endurance and cardiovascular health'),
    'combo': Plan('combo', 'Strength + Cardio', 7500, 30, 'Complete fitness package'),
}


def now() -> datetime:
    return datetime.now()


def get_plan(plan: str | None) -> Plan | None:
    """Look a plan up by id ('combo') or display name ('Strength + Cardio')."""
    key = (plan or '').strip()
    if not key:
        return None
    if key.lower() in PLANS:
        return PLANS[key.lower()]
    for p in PLANS.values():
        if p.name.lower() == key.lower():
            return p
    return None


def plan_duration_days(plan: str | None) -> int:
    p = get_plan(plan)
    return p.duration_days if p else 30


def compute_total(plan_price: float, registration_fee: bool = False, custom_registration_fee: float = REGISTRATION_FEE,
                  discount: bool = False, discount_amount: float = 0) -> float:
    reg = float(custom_registration_fee or 0) if registration_fee else 0.0
    off = float(discount_amount or 0) if discount else 0.0
    return max(0.0, float(plan_price or 0) + reg - off)


def validate_charges(plan_price: float, registration_fee: bool, custom_registration_fee: float,
                     discount: bool, discount_amount: float) -> None:
    if registration_fee and float(custom_registration_fee or 0) < 0:
        raise ValueError('Registration fee cannot be negative')
    if not discount:
        return
    amount = float(discount_amount or 0)
    if amount < 0:
        raise ValueError('Discount amount cannot be negative')
    subtotal = float(plan_price or 0) + (float(custom_registration_fee or 0) if registration_fee else 0.0)
    if amount > subtotal:
        raise ValueError('Discount amount cannot exceed the total fees (membership + registration fee)')


def generate_transaction_id(prefix: str = 'ADMIN') -> str:
    alphabet = string.ascii_lowercase + string.digits
    tail = ''.join(random.choice(alphabet) for _ in range(9))
    return f"{prefix}{int(time.time() * 1000)}{tail}"


def period_fields(when: datetime) -> dict:
    return {
        'month': f"{when.year}-{when.month:02d}",
        'year': when.year,
        'month_name': MONTH_NAMES[when.month - 1],
        'quarter': f"Q{math.ceil(when.month / 3)}",
    }


_PAYMENT_FIELDS = {
    'uid', 'amount', 'plan_type', 'transaction_id', 'payment_method', 'status', 'user_email', 'user_name',
    'approved_by', 'registration_fee', 'custom_registration_fee', 'discount', 'discount_amount',
    'membership_start_date', 'membership_end_date', 'revenue_category',
}


def _payment_kwargs(data: dict) -> dict:
    unknown = set(data) - _PAYMENT_FIELDS
    if unknown:
        raise ValueError(f"Unknown payment fields: {', '.join(sorted(unknown))}")
    kwargs = dict(data)
    kwargs['registration_fee'] = bool(kwargs.get('registration_fee'))
    kwargs['discount'] = bool(kwargs.get('discount'))
    return kwargs


def add_payment_record(data: dict) -> Payment:
    ts = now()
    p = Payment(created_at=ts, updated_at=ts, **_payment_kwargs(data))
    db.session.add(p)
    db.session.commit()
    logger.info("Payment record created: %s", p.id)
    return p


def add_payment_record_with_retention(data: dict) -> Payment:
    ts = now()
    period = period_fields(ts)
    p = Payment(
        created_at=ts,
        updated_at=ts,
        is_archived=False,
        retention_expiry_date=ts + timedelta(days=PAYMENT_RETENTION_DAYS),
        payment_month=period['month'],
        payment_year=period['year'],
        payment_month_name=period['month_name'],
        payment_quarter=period['quarter'],
        **_payment_kwargs(data),
    )
    db.session.add(p)
    db.session.commit()
    logger.info("Payment record with retention created: %s", p.id)
    return p


def archive_expired_payments(reason: str = 'Retention period expired') -> int:
    ts = now()
    rows = Payment.query.filter(
        Payment.is_archived.is_(False),
        Payment.retention_expiry_date.isnot(None),
        Payment.retention_expiry_date <= ts,
    ).all()
    for p in rows:
        p.is_archived = True
        p.archived_at = ts
        p.archive_reason = reason
        p.updated_at = ts
    if rows:
        db.session.commit()
    logger.info("Archived %d payment records", len(rows))
    return len(rows)


def cleanup_archived_payments() -> int:
    cutoff = now() - timedelta(days=ARCHIVE_PURGE_DAYS)
    count = Payment.query.filter(
        Payment.is_archived.is_(True),
        Payment.archived_at.isnot(None),
        Payment.archived_at <= cutoff,
    ).delete(synchronize_session=False)
    db.session.commit()
    logger.info("Deleted %d archived payment records", count)
    return count


def get_active_payment_records(uid: str | None = None) -> list[Payment]:
    q = Payment.query.filter(Payment.is_archived.is_(False))
    if uid:
        q = q.filter(Payment.uid == uid)
    return q.order_by(Payment.created_at.desc(), Payment.id.desc()).all()


def latest_payment_for(uid: str, transaction_id: str | None = None) -> Payment | None:
    q = Payment.query.filter_by(uid=uid)
    if transaction_id:
        match = q.filter_by(transaction_id=transaction_id).order_by(Payment.created_at.desc()).first()
        if match:
            return match
    return q.order_by(Payment.created_at.desc(), Payment.id.desc()).first()


def anonymize_user_payments(uid: str, deleted_by: str | None) -> int:
    ts = now()
    rows = Payment.query.filter_by(uid=uid).all()
    for p in rows:
        p.uid = None
        p.user_email = None
        p.user_name = None
        p.deleted_at = ts
        p.deleted_by = deleted_by
        p.original_user_id = uid
        p.is_anonymized = True
        p.updated_at = ts
    db.session.commit()
    return len(rows)
