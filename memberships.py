"""
memberships.py
Membership requests, approvals, plan assignment (renewal vs. in-place edit),
visitor passes and the expiry sweep.

A plan change touches up to four rows: the membership, a payment, a receipt
and the summary copied onto the user. They are written one after another
with separate commits. If a later write fails the earlier ones stay; the
failure is logged and the operation still reports success.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

import billing
import receipts
import users
from models import Membership, MembershipRequest, Payment, User, append_audit, db

logger = logging.getLogger(__name__)

RENEWAL_WINDOW_DAYS = 7
INACTIVE_AFTER_DAYS = 7
RENEWAL_REMINDER_AFTER_DAYS = 25
REQUEST_STATUSES = ('pending', 'active', 'rejected')


def days_remaining(end_date: datetime | None, now: datetime | None = None) -> int:
    if end_date is None:
        return 0
    now = now or billing.now()
    return max(0, math.ceil((end_date - now).total_seconds() / 86400))


def hours_remaining(end_date: datetime, now: datetime | None = None) -> int:
    now = now or billing.now()
    return math.ceil((end_date - now).total_seconds() / 3600)


def is_renewal_due(end_date: datetime | None, now: datetime | None = None) -> bool:
    return days_remaining(end_date, now) < RENEWAL_WINDOW_DAYS


def expiry_status(end_date: datetime | None, is_visitor: bool = False, now: datetime | None = None) -> dict:
    """Classify an expiry date the way the dashboards display it."""
    if end_date is None:
        return {'status': 'no_expiry', 'days_remaining': None, 'days_since_expiry': None}
    now = now or billing.now()
    if is_visitor:
        hours = hours_remaining(end_date, now)
        if hours < 0:
            return {'status': 'expired', 'days_remaining': None,
                    'days_since_expiry': math.floor((now - end_date).total_seconds() / 86400)}
        if hours == 0:
            return {'status': 'expires_today', 'days_remaining': 0, 'days_since_expiry': None}
        status = 'expiring_soon' if hours <= 24 else 'active'
        return {'status': status, 'days_remaining': math.ceil(hours / 24), 'days_since_expiry': None}
    remaining = days_remaining(end_date, now)
    if remaining > 0:
        status = 'expiring_soon' if remaining <= RENEWAL_WINDOW_DAYS else 'active'
        return {'status': status, 'days_remaining': remaining, 'days_since_expiry': None}
    if end_date.date() == now.date():
        return {'status': 'expires_today', 'days_remaining': 0, 'days_since_expiry': None}
    return {'status': 'expired', 'days_remaining': None,
            'days_since_expiry': math.floor((now - end_date).total_seconds() / 86400)}


def get_user_membership(uid: str) -> Membership | None:
    return (
        Membership.query.filter_by(uid=uid, is_visitor=False)
        .order_by(Membership.created_at.desc(), Membership.id.desc())
        .first()
    )


def list_memberships(status: str | None = None, include_visitors: bool = True) -> list[Membership]:
    q = Membership.query
    if status:
        q = q.filter_by(status=status)
    if not include_visitors:
        q = q.filter_by(is_visitor=False)
    return q.order_by(Membership.created_at.desc(), Membership.id.desc()).all()


def _require_customer(uid: str) -> User:
    user = users.get_user(uid)
    if not user:
        raise LookupError('User not found')
    if user.role != 'customer':
        raise ValueError('Memberships can only be assigned to customers')
    return user


def _require_plan(plan_id: str) -> billing.Plan:
    plan = billing.get_plan(plan_id)
    if not plan:
        raise ValueError('Invalid membership plan')
    return plan


# ---------- Requests & approval ----------

def create_membership_request(uid: str, plan_type: str, payment_method: str = 'Cash', transaction_id: str | None = None,
                              amount: float | None = None, start_date: datetime | None = None,
                              end_date: datetime | None = None) -> MembershipRequest:
    user = _require_customer(uid)
    plan = _require_plan(plan_type)
    if MembershipRequest.query.filter_by(uid=uid, status='pending').first():
        raise ValueError('A membership request is already pending approval')
    start = start_date or billing.now()
    req = MembershipRequest(
        uid=uid,
        plan_type=plan.name,
        amount=float(amount) if amount is not None else plan.price,
        payment_method=payment_method or 'Cash',
        transaction_id=transaction_id or billing.generate_transaction_id('REQ'),
        start_date=start,
        end_date=end_date or start + timedelta(days=plan.duration_days),
        status='pending',
        user_name=user.name,
        user_email=user.email,
    )
    db.session.add(req)
    db.session.commit()
    users.sync_membership_summary(uid, {'membership_status': 'pending'})
    append_audit('membership.request.create', {'request_id': req.id, 'uid': uid, 'plan_type': req.plan_type})
    logger.info("Membership request created for user %s with ID: %s", uid, req.id)
    return req


def update_membership_request_status(request_id: int, status: str, admin_uid: str, rejection_reason: str | None = None,
                                     additional: dict | None = None) -> MembershipRequest:
    if status not in REQUEST_STATUSES:
        raise ValueError(f"status must be one of {', '.join(REQUEST_STATUSES)}")
    req = db.session.get(MembershipRequest, request_id)
    if not req:
        raise LookupError('Membership request not found')
    if req.status != 'pending':
        raise ValueError(f"Request already {req.status}")
    additional = additional or {}
    req.status = status
    req.updated_by = admin_uid
    req.updated_at = billing.now()
    if rejection_reason:
        req.rejection_reason = rejection_reason
    db.session.commit()

    if status == 'active':
        plan = billing.get_plan(req.plan_type)
        start = additional.get('start_date') or req.start_date or billing.now()
        end = additional.get('end_date') or req.end_date or start + timedelta(days=plan.duration_days if plan else 30)
        total = additional.get('total_amount')
        total = float(total) if total is not None else float(req.amount or 0)
        breakdown = {
            'registration_fee': bool(additional.get('registration_fee')),
            'custom_registration_fee': additional.get('custom_registration_fee'),
            'discount': bool(additional.get('discount')),
            'discount_amount': additional.get('discount_amount'),
            'total_amount': total,
        }
        membership = create_membership(req.uid, req.plan_type, total, req.payment_method, req.transaction_id,
                                       start, end, breakdown, plan_fee=plan.price if plan else req.amount,
                                       actor_uid=admin_uid)
        _record_payment({
            'uid': req.uid,
            'amount': total,
            'plan_type': req.plan_type,
            'transaction_id': req.transaction_id,
            'payment_method': req.payment_method,
            'status': 'completed',
            'user_email': req.user_email or '',
            'user_name': req.user_name or 'Unknown User',
            'approved_by': admin_uid,
            'membership_start_date': membership.start_date,
            'membership_end_date': membership.end_date,
            **{k: v for k, v in breakdown.items() if k != 'total_amount'},
        })
        logger.info("Membership approved and all records created for user %s", req.uid)
    elif status == 'rejected':
        user = users.get_user(req.uid)
        if user and user.membership_status == 'pending':
            users.sync_membership_summary(req.uid, {'membership_status': 'no_plan'})
    append_audit('membership.request.status', {'request_id': req.id, 'status': status, 'by': admin_uid})
    return req


def list_membership_requests(status: str | None = None) -> list[MembershipRequest]:
    q = MembershipRequest.query
    if status:
        q = q.filter_by(status=status)
    return q.order_by(MembershipRequest.created_at.desc()).all()


# ---------- Membership records ----------

def _record_payment(data: dict) -> Payment | None:
    try:
        return billing.add_payment_record_with_retention(data)
    except Exception:
        db.session.rollback()
        logger.exception("Payment record failed for transaction %s", data.get('transaction_id'))
        return None


def _issue_receipt(user: User | None, membership: Membership, plan_fee: float | None):
    if user is None:
        logger.error("User data not found for receipt generation")
        return None
    try:
        return receipts.create_receipt({
            'user_id': user.uid,
            'member_id': user.member_id or 'N/A',
            'customer_name': user.name,
            'membership_type': membership.plan_type,
            'amount': membership.amount,
            'payment_method': membership.payment_method,
            'transaction_id': membership.transaction_id,
            'start_date': membership.start_date,
            'end_date': membership.end_date,
            'status': 'active',
            'plan_membership_fee': plan_fee,
            'registration_fee': membership.registration_fee,
            'custom_registration_fee': membership.custom_registration_fee,
            'discount': membership.discount,
            'discount_amount': membership.discount_amount,
            'total_amount': membership.total_amount,
        })
    except Exception:
        db.session.rollback()
        logger.exception("Receipt generation failed for transaction %s", membership.transaction_id)
        return None


def _summary_from(membership: Membership, with_dates: bool = True) -> dict:
    summary = {
        'membership_status': 'active',
        'membership_plan': membership.plan_type,
        'membership_amount': membership.amount,
        'registration_fee': membership.registration_fee,
        'custom_registration_fee': membership.custom_registration_fee,
        'discount': membership.discount,
        'discount_amount': membership.discount_amount,
        'total_amount': membership.total_amount,
    }
    if with_dates:
        summary.update({
            'membership_start_date': membership.start_date,
            'membership_expiry_date': membership.end_date,
            'last_renewal_reminder': billing.now(),
        })
    return summary


def _reactivate_account(user: User | None, actor_uid: str | None) -> None:
    """An account switched off by the expiry sweep can log in again once it holds an active plan."""
    if user is None or user.status == 'active':
        return
    user.status = 'active'
    user.status_updated_at = billing.now()
    user.status_updated_by = actor_uid or 'system'
    db.session.commit()
    logger.info("Account %s reactivated", user.uid)


def create_membership(uid: str, plan_type: str, amount: float, payment_method: str, transaction_id: str,
                      start_date: datetime, end_date: datetime, breakdown: dict | None = None,
                      plan_fee: float | None = None, actor_uid: str | None = None) -> Membership:
    breakdown = breakdown or {}
    ts = billing.now()
    membership = Membership(
        uid=uid,
        plan_type=plan_type,
        amount=amount,
        payment_method=payment_method or 'Cash',
        transaction_id=transaction_id,
        start_date=start_date,
        end_date=end_date,
        status='active',
        registration_fee=bool(breakdown.get('registration_fee')),
        custom_registration_fee=breakdown.get('custom_registration_fee'),
        discount=bool(breakdown.get('discount')),
        discount_amount=breakdown.get('discount_amount'),
        total_amount=breakdown.get('total_amount', amount),
        renewal_count=0,
        last_renewal_date=ts,
        next_renewal_reminder=start_date + timedelta(days=RENEWAL_REMINDER_AFTER_DAYS),
        created_at=ts,
        updated_at=ts,
    )
    db.session.add(membership)
    db.session.commit()
    user = users.sync_membership_summary(uid, _summary_from(membership))
    _reactivate_account(user, actor_uid)
    _issue_receipt(user, membership, plan_fee)
    append_audit('membership.create', {'membership_id': membership.id, 'uid': uid, 'plan_type': plan_type,
                                       'amount': amount})
    logger.info("Membership created for user %s", uid)
    return membership


def assign_membership(uid: str, plan_id: str, registration_fee: bool = False,
                      custom_registration_fee: float = billing.REGISTRATION_FEE, discount: bool = False,
                      discount_amount: float = 0, actor_uid: str | None = None,
                      payment_method: str = 'Cash') -> dict:
    """Assign or edit a customer's plan from the staff dashboard.

    - no membership yet: a new one starting now is created.
    - fewer than RENEWAL_WINDOW_DAYS left on the latest one: it is renewed.
      Dates restart from now, renewal_count goes up and a fresh payment and
      receipt are written.
    - otherwise the plan and amounts are corrected in place on the
      membership, its payment and its receipt; dates are left alone.
    """
    user = _require_customer(uid)
    plan = _require_plan(plan_id)
    billing.validate_charges(plan.price, registration_fee, custom_registration_fee, discount, discount_amount)
    total = billing.compute_total(plan.price, registration_fee, custom_registration_fee, discount, discount_amount)
    breakdown = {
        'registration_fee': bool(registration_fee),
        'custom_registration_fee': float(custom_registration_fee or 0),
        'discount': bool(discount),
        'discount_amount': float(discount_amount or 0),
    }
    now = billing.now()
    existing = get_user_membership(uid)

    if existing is None:
        transaction_id = billing.generate_transaction_id()
        membership = create_membership(uid, plan.name, total, payment_method, transaction_id, now,
                                       now + timedelta(days=plan.duration_days), dict(breakdown, total_amount=total),
                                       plan_fee=plan.price, actor_uid=actor_uid)
        payment = _record_payment(_payment_data(user, membership, plan, actor_uid))
        return {'action': 'created', 'membership': membership, 'payment': payment, 'total': total}

    if is_renewal_due(existing.end_date, now):
        existing.plan_type = plan.name
        existing.amount = total
        existing.total_amount = total
        existing.payment_method = payment_method or 'Cash'
        existing.transaction_id = billing.generate_transaction_id()
        for key, value in breakdown.items():
            setattr(existing, key, value)
        existing.start_date = now
        existing.end_date = now + timedelta(days=plan.duration_days)
        existing.status = 'active'
        existing.renewal_count = (existing.renewal_count or 0) + 1
        existing.last_renewal_date = now
        existing.next_renewal_reminder = now + timedelta(days=RENEWAL_REMINDER_AFTER_DAYS)
        existing.updated_at = now
        db.session.commit()
        users.sync_membership_summary(uid, _summary_from(existing))
        _reactivate_account(user, actor_uid)
        payment = _record_payment(_payment_data(user, existing, plan, actor_uid))
        _issue_receipt(user, existing, plan.price)
        append_audit('membership.renew', {'membership_id': existing.id, 'uid': uid, 'plan_type': plan.name,
                                          'amount': total, 'renewal_count': existing.renewal_count, 'by': actor_uid})
        logger.info("Membership %s renewed for user %s (renewal #%d)", existing.id, uid, existing.renewal_count)
        return {'action': 'renewed', 'membership': existing, 'payment': payment, 'total': total}

    existing.plan_type = plan.name
    existing.amount = total
    existing.total_amount = total
    for key, value in breakdown.items():
        setattr(existing, key, value)
    existing.updated_at = now
    db.session.commit()
    users.sync_membership_summary(uid, _summary_from(existing, with_dates=False))
    payment = _correct_payment(uid, existing, plan)
    _correct_receipt(uid, existing, plan)
    append_audit('membership.update', {'membership_id': existing.id, 'uid': uid, 'plan_type': plan.name,
                                       'amount': total, 'by': actor_uid})
    logger.info("Membership %s updated in place for user %s", existing.id, uid)
    return {'action': 'updated', 'membership': existing, 'payment': payment, 'total': total}


def _payment_data(user: User, membership: Membership, plan: billing.Plan, actor_uid: str | None) -> dict:
    return {
        'uid': user.uid,
        'amount': membership.amount,
        'plan_type': plan.name,
        'transaction_id': membership.transaction_id,
        'payment_method': membership.payment_method,
        'status': 'completed',
        'user_email': user.email,
        'user_name': user.name,
        'approved_by': actor_uid,
        'registration_fee': membership.registration_fee,
        'custom_registration_fee': membership.custom_registration_fee,
        'discount': membership.discount,
        'discount_amount': membership.discount_amount,
        'membership_start_date': membership.start_date,
        'membership_end_date': membership.end_date,
    }


def _correct_payment(uid: str, membership: Membership, plan: billing.Plan) -> Payment | None:
    try:
        payment = billing.latest_payment_for(uid, membership.transaction_id)
        if not payment:
            logger.warning("No payment found to update for membership %s", membership.id)
            return None
        payment.amount = membership.amount
        payment.plan_type = plan.name
        payment.registration_fee = membership.registration_fee
        payment.custom_registration_fee = membership.custom_registration_fee
        payment.discount = membership.discount
        payment.discount_amount = membership.discount_amount
        payment.updated_at = billing.now()
        db.session.commit()
        return payment
    except Exception:
        db.session.rollback()
        logger.exception("Membership %s updated but payment update failed", membership.id)
        return None


def _correct_receipt(uid: str, membership: Membership, plan: billing.Plan) -> None:
    try:
        receipt = receipts.latest_receipt_for(uid, membership.transaction_id)
        if not receipt:
            logger.warning("No receipt found to update for membership %s", membership.id)
            return
        receipt.membership_type = plan.name
        receipt.amount = membership.amount
        receipt.total_amount = membership.total_amount
        receipt.plan_membership_fee = plan.price
        receipt.registration_fee = membership.registration_fee
        receipt.custom_registration_fee = membership.custom_registration_fee
        receipt.discount = membership.discount
        receipt.discount_amount = membership.discount_amount
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Membership %s updated but receipt update failed", membership.id)


# ---------- Visitors ----------

def add_visitor(name: str, phone: str, payment_method: str = 'Cash', amount: float | None = None,
                actor_uid: str | None = None) -> Membership:
    name = (name or '').strip()
    if not name:
        raise ValueError('Visitor name is required')
    plan = billing.PLANS['visitor']
    price = float(amount) if amount not in (None, '') else plan.price
    if price < 0:
        raise ValueError('Amount cannot be negative')
    now = billing.now()
    period = billing.period_fields(now)
    visitor = Membership(
        uid=None,
        plan_type=plan.name,
        amount=price,
        total_amount=price,
        payment_method=payment_method or 'Cash',
        transaction_id=billing.generate_transaction_id('VISIT'),
        start_date=now,
        end_date=now + timedelta(days=plan.duration_days),
        status='active',
        is_visitor=True,
        visitor_name=name,
        visitor_phone=(phone or '').strip() or None,
        visitor_month=period['month'],
        visitor_year=period['year'],
        visitor_month_name=period['month_name'],
        visitor_quarter=period['quarter'],
        revenue_category='visitor',
        created_at=now,
        updated_at=now,
    )
    db.session.add(visitor)
    db.session.commit()
    _record_payment({
        'uid': None,
        'amount': price,
        'plan_type': plan.name,
        'transaction_id': visitor.transaction_id,
        'payment_method': visitor.payment_method,
        'status': 'completed',
        'user_name': name,
        'approved_by': actor_uid,
        'membership_start_date': visitor.start_date,
        'membership_end_date': visitor.end_date,
        'revenue_category': 'visitor',
    })
    append_audit('visitor.create', {'membership_id': visitor.id, 'name': name, 'amount': price, 'by': actor_uid})
    logger.info("Visitor added with month categorization for financial reporting: %s", name)
    return visitor


# ---------- Expiry sweep ----------

def check_membership_statuses(now: datetime | None = None) -> dict:
    """Expire lapsed memberships; deactivate customers whose plan lapsed more than a week ago."""
    now = now or billing.now()
    customers = User.query.filter(User.role == 'customer', User.membership_expiry_date.isnot(None)).all()
    checked = inactive = expired = 0
    for user in customers:
        checked += 1
        days_since_expiry = math.floor((now - user.membership_expiry_date).total_seconds() / 86400)
        if days_since_expiry > INACTIVE_AFTER_DAYS and user.status == 'active':
            user.status = 'inactive'
            user.membership_status = 'expired'
            user.last_renewal_reminder = now
            user.status_updated_at = now
            user.status_updated_by = 'system'
            inactive += 1
            logger.info("User %s set to inactive (expired %d days ago)", user.email, days_since_expiry)
        elif user.membership_expiry_date < now and user.membership_status == 'active':
            user.membership_status = 'expired'
            user.last_renewal_reminder = now
            expired += 1
            logger.info("User %s membership expired", user.email)
        else:
            continue
        latest = get_user_membership(user.uid)
        if latest and latest.status == 'active' and latest.end_date < now:
            latest.status = 'expired'
            latest.updated_at = now
        db.session.commit()
    visitors = Membership.query.filter(Membership.is_visitor.is_(True), Membership.status == 'active',
                                       Membership.end_date < now).all()
    for v in visitors:
        v.status = 'expired'
        v.updated_at = now
    if visitors:
        db.session.commit()
    logger.info("Membership status check completed: %d users checked, %d set to inactive", checked, inactive)
    return {'checked': checked, 'inactive': inactive, 'expired': expired, 'visitors_expired': len(visitors)}
