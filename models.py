"""
models.py
Database tables and small persistence helpers (settings, audit trail).

Each table mirrors one collection of the gym dashboard. Rows are kept
denormalized: a user row repeats the summary of its latest membership and a
receipt repeats the membership and payment it proves.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ROLES = ('customer', 'receptionist', 'admin')
MEMBERSHIP_STATUSES = ('active', 'pending', 'expired', 'no_plan')


def _iso(value):
    return value.isoformat() if value else None


def _new_uid() -> str:
    return uuid.uuid4().hex


class User(db.Model):
    __tablename__ = 'users'

    uid = db.Column(db.String(64), primary_key=True, default=_new_uid)
    member_id = db.Column(db.String(16), unique=True, nullable=True, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(50), nullable=True)
    cnic = db.Column(db.String(20), nullable=True)
    gender = db.Column(db.String(20), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(20), nullable=False, default='customer', index=True)
    status = db.Column(db.String(20), nullable=False, default='active')  # active/inactive
    profile_image_url = db.Column(db.String(500), nullable=True)
    profile_image_public_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    last_login_at = db.Column(db.DateTime, nullable=True)
    status_updated_at = db.Column(db.DateTime, nullable=True)
    status_updated_by = db.Column(db.String(64), nullable=True)

    # Summary duplicated from the latest Membership row
    membership_status = db.Column(db.String(20), nullable=True)
    membership_plan = db.Column(db.String(60), nullable=True)
    membership_amount = db.Column(db.Float, nullable=True)
    membership_start_date = db.Column(db.DateTime, nullable=True)
    membership_expiry_date = db.Column(db.DateTime, nullable=True, index=True)
    last_renewal_reminder = db.Column(db.DateTime, nullable=True)
    registration_fee = db.Column(db.Boolean, nullable=True)
    custom_registration_fee = db.Column(db.Float, nullable=True)
    discount = db.Column(db.Boolean, nullable=True)
    discount_amount = db.Column(db.Float, nullable=True)
    total_amount = db.Column(db.Float, nullable=True)

    def to_dict(self):
        return {
            'uid': self.uid,
            'member_id': self.member_id,
            'email': self.email,
            'name': self.name,
            'phone': self.phone or '',
            'cnic': self.cnic or '',
            'gender': self.gender or '',
            'address': self.address or '',
            'role': self.role,
            'status': self.status,
            'profile_image_url': self.profile_image_url,
            'created_at': _iso(self.created_at),
            'last_login_at': _iso(self.last_login_at),
            'membership_status': self.membership_status or ('no_plan' if self.role == 'customer' else None),
            'membership_plan': self.membership_plan,
            'membership_amount': self.membership_amount,
            'membership_start_date': _iso(self.membership_start_date),
            'membership_expiry_date': _iso(self.membership_expiry_date),
            'last_renewal_reminder': _iso(self.last_renewal_reminder),
            'registration_fee': bool(self.registration_fee),
            'custom_registration_fee': self.custom_registration_fee,
            'discount': bool(self.discount),
            'discount_amount': self.discount_amount,
            'total_amount': self.total_amount,
        }


class MembershipRequest(db.Model):
    __tablename__ = 'membership_requests'

    id = db.Column(db.Integer, primary_key=True)
    uid = db.Column(db.String(64), nullable=False, index=True)
    plan_type = db.Column(db.String(60), nullable=False)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    payment_method = db.Column(db.String(40), nullable=False, default='Cash')
    transaction_id = db.Column(db.String(64), nullable=False)
    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='pending', index=True)  # pending/active/rejected
    rejection_reason = db.Column(db.String(255), nullable=True)
    updated_by = db.Column(db.String(64), nullable=True)
    user_name = db.Column(db.String(120), nullable=True)
    user_email = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'uid': self.uid,
            'plan_type': self.plan_type,
            'amount': self.amount,
            'payment_method': self.payment_method,
            'transaction_id': self.transaction_id,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'status': self.status,
            'rejection_reason': self.rejection_reason,
            'updated_by': self.updated_by,
            'user_data': {'name': self.user_name or '', 'email': self.user_email or ''},
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Membership(db.Model):
    __tablename__ = 'memberships'

    id = db.Column(db.Integer, primary_key=True)
    uid = db.Column(db.String(64), nullable=True, index=True)
    plan_type = db.Column(db.String(60), nullable=False)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    payment_method = db.Column(db.String(40), nullable=False, default='Cash')
    transaction_id = db.Column(db.String(64), nullable=True, index=True)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default='active')  # active/pending/expired
    registration_fee = db.Column(db.Boolean, nullable=False, default=False)
    custom_registration_fee = db.Column(db.Float, nullable=True)
    discount = db.Column(db.Boolean, nullable=False, default=False)
    discount_amount = db.Column(db.Float, nullable=True)
    total_amount = db.Column(db.Float, nullable=True)
    renewal_count = db.Column(db.Integer, nullable=False, default=0)
    last_renewal_date = db.Column(db.DateTime, nullable=True)
    next_renewal_reminder = db.Column(db.DateTime, nullable=True)
    is_visitor = db.Column(db.Boolean, nullable=False, default=False)
    visitor_name = db.Column(db.String(120), nullable=True)
    visitor_phone = db.Column(db.String(50), nullable=True)
    visitor_month = db.Column(db.String(7), nullable=True, index=True)
    visitor_year = db.Column(db.Integer, nullable=True)
    visitor_month_name = db.Column(db.String(12), nullable=True)
    visitor_quarter = db.Column(db.String(2), nullable=True)
    revenue_category = db.Column(db.String(20), nullable=False, default='membership')
    created_at = db.Column(db.DateTime, default=datetime.now, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'uid': self.uid,
            'plan_type': self.plan_type,
            'amount': self.amount,
            'payment_method': self.payment_method,
            'transaction_id': self.transaction_id,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'status': self.status,
            'registration_fee': bool(self.registration_fee),
            'custom_registration_fee': self.custom_registration_fee,
            'discount': bool(self.discount),
            'discount_amount': self.discount_amount,
            'total_amount': self.total_amount,
            'renewal_count': self.renewal_count or 0,
            'last_renewal_date': _iso(self.last_renewal_date),
            'next_renewal_reminder': _iso(self.next_renewal_reminder),
            'is_visitor': bool(self.is_visitor),
            'visitor_name': self.visitor_name,
            'visitor_phone': self.visitor_phone,
            'visitor_month': self.visitor_month,
            'revenue_category': self.revenue_category,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Payment(db.Model):
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    uid = db.Column(db.String(64), nullable=True, index=True)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    plan_type = db.Column(db.String(60), nullable=True)
    transaction_id = db.Column(db.String(64), nullable=True, index=True)
    payment_method = db.Column(db.String(40), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='completed')
    user_email = db.Column(db.String(255), nullable=True)
    user_name = db.Column(db.String(120), nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    registration_fee = db.Column(db.Boolean, nullable=False, default=False)
    custom_registration_fee = db.Column(db.Float, nullable=True)
    discount = db.Column(db.Boolean, nullable=False, default=False)
    discount_amount = db.Column(db.Float, nullable=True)
    membership_start_date = db.Column(db.DateTime, nullable=True)
    membership_end_date = db.Column(db.DateTime, nullable=True)
    revenue_category = db.Column(db.String(20), nullable=False, default='membership')
    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    retention_expiry_date = db.Column(db.DateTime, nullable=True)
    archived_at = db.Column(db.DateTime, nullable=True)
    archive_reason = db.Column(db.String(120), nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)
    deleted_by = db.Column(db.String(64), nullable=True)
    original_user_id = db.Column(db.String(64), nullable=True)
    is_anonymized = db.Column(db.Boolean, nullable=False, default=False)
    payment_month = db.Column(db.String(7), nullable=True, index=True)
    payment_year = db.Column(db.Integer, nullable=True, index=True)
    payment_month_name = db.Column(db.String(12), nullable=True)
    payment_quarter = db.Column(db.String(2), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.now)

    __table_args__ = (
        db.Index('idx_payment_year_quarter', 'payment_year', 'payment_quarter'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'uid': self.uid,
            'amount': self.amount,
            'plan_type': self.plan_type,
            'transaction_id': self.transaction_id,
            'payment_method': self.payment_method,
            'status': self.status,
            'user_email': self.user_email,
            'user_name': self.user_name,
            'approved_by': self.approved_by,
            'registration_fee': bool(self.registration_fee),
            'custom_registration_fee': self.custom_registration_fee,
            'discount': bool(self.discount),
            'discount_amount': self.discount_amount,
            'membership_start_date': _iso(self.membership_start_date),
            'membership_end_date': _iso(self.membership_end_date),
            'revenue_category': self.revenue_category,
            'is_archived': bool(self.is_archived),
            'retention_expiry_date': _iso(self.retention_expiry_date),
            'archived_at': _iso(self.archived_at),
            'is_anonymized': bool(self.is_anonymized),
            'original_user_id': self.original_user_id,
            'payment_month': self.payment_month,
            'payment_year': self.payment_year,
            'payment_month_name': self.payment_month_name,
            'payment_quarter': self.payment_quarter,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Receipt(db.Model):
    __tablename__ = 'receipts'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    member_id = db.Column(db.String(16), nullable=True)
    customer_name = db.Column(db.String(120), nullable=False)
    membership_type = db.Column(db.String(60), nullable=False)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    payment_method = db.Column(db.String(40), nullable=True)
    transaction_id = db.Column(db.String(64), nullable=True, index=True)
    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='active')
    receipt_number = db.Column(db.String(40), unique=True, nullable=False)
    gym_name = db.Column(db.String(120), nullable=True)
    gym_address = db.Column(db.String(255), nullable=True)
    gym_phone = db.Column(db.String(50), nullable=True)
    gym_email = db.Column(db.String(255), nullable=True)
    plan_membership_fee = db.Column(db.Float, nullable=True)
    registration_fee = db.Column(db.Boolean, nullable=False, default=False)
    custom_registration_fee = db.Column(db.Float, nullable=True)
    discount = db.Column(db.Boolean, nullable=False, default=False)
    discount_amount = db.Column(db.Float, nullable=True)
    total_amount = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'member_id': self.member_id or 'N/A',
            'customer_name': self.customer_name,
            'membership_type': self.membership_type,
            'amount': self.amount,
            'payment_method': self.payment_method,
            'transaction_id': self.transaction_id,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'status': self.status,
            'receipt_number': self.receipt_number,
            'gym_name': self.gym_name,
            'gym_address': self.gym_address,
            'gym_phone': self.gym_phone,
            'gym_email': self.gym_email,
            'plan_membership_fee': self.plan_membership_fee,
            'registration_fee': bool(self.registration_fee),
            'custom_registration_fee': self.custom_registration_fee,
            'discount': bool(self.discount),
            'discount_amount': self.discount_amount,
            'total_amount': self.total_amount,
            'created_at': _iso(self.created_at),
        }


class Expense(db.Model):
    __tablename__ = 'expenses'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(140), nullable=False)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    category = db.Column(db.String(40), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    month = db.Column(db.String(7), nullable=False, index=True)  # YYYY-MM
    year = db.Column(db.Integer, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    created_by = db.Column(db.String(64), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'amount': self.amount,
            'category': self.category,
            'description': self.description or '',
            'month': self.month,
            'year': self.year,
            'created_at': _iso(self.created_at),
            'created_by': self.created_by,
        }


class Attendance(db.Model):
    """Daily check-ins (from the front desk or a fingerprint reader)"""
    __tablename__ = 'attendance'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    check_in = db.Column(db.DateTime, nullable=False, default=datetime.now)
    present = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            'attendance_id': self.id,
            'user_id': self.user_id,
            'date': self.date.isoformat(),
            'check_in': _iso(self.check_in),
            'present': bool(self.present),
        }


class Setting(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.String(1000), nullable=True)


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    action = db.Column(db.String(100), nullable=False)
    data_json = db.Column(db.Text, nullable=False)
    prev_hash = db.Column(db.String(64), nullable=True)
    hash = db.Column(db.String(64), nullable=False)


def get_setting(key: str, default: str | None = None) -> str | None:
    s = Setting.query.filter_by(key=key).first()
    return s.value if s else default


def set_setting(key: str, value: str) -> None:
    s = Setting.query.filter_by(key=key).first()
    if not s:
        s = Setting(key=key, value=value)
        db.session.add(s)
    else:
        s.value = value
    db.session.commit()


def _audit_hash(prev: str | None, ts: str, action: str, data_json: str) -> str:
    h = hashlib.sha256()
    h.update((prev or '').encode('utf-8'))
    h.update(ts.encode('utf-8'))
    h.update(action.encode('utf-8'))
    h.update(data_json.encode('utf-8'))
    return h.hexdigest()


def append_audit(action: str, data: dict) -> None:
    # naive UTC so the hashed timestamp reads back unchanged from SQLite
    created = datetime.now(timezone.utc).replace(tzinfo=None)
    prev = AuditLog.query.order_by(AuditLog.id.desc()).first()
    prev_hash = prev.hash if prev else None
    data_json = json.dumps(data, separators=(',', ':'), sort_keys=True, default=str)
    digest = _audit_hash(prev_hash, created.isoformat(), action, data_json)
    rec = AuditLog(created_at=created, action=action, data_json=data_json, prev_hash=prev_hash, hash=digest)
    db.session.add(rec)
    db.session.commit()


def verify_audit_chain() -> bool:
    prev_hash = None
    for rec in AuditLog.query.order_by(AuditLog.id).all():
        if rec.prev_hash != prev_hash:
            return False
        if _audit_hash(rec.prev_hash, rec.created_at.isoformat(), rec.action, rec.data_json) != rec.hash:
            return False
        prev_hash = rec.hash
    return True
