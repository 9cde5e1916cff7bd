"""
users.py
Accounts and profiles for customers, receptionists and admins.
"""

from __future__ import annotations

import logging
import random

from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash

import billing
import cloudinary_client
from models import ROLES, Membership, User, append_audit, db

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ('name', 'phone', 'cnic', 'gender', 'address')
STAFF_FIELDS = PROFILE_FIELDS + ('role', 'status', 'email')
MEMBERSHIP_SUMMARY_FIELDS = (
    'membership_status', 'membership_plan', 'membership_amount', 'membership_start_date',
    'membership_expiry_date', 'last_renewal_reminder', 'registration_fee', 'custom_registration_fee',
    'discount', 'discount_amount', 'total_amount',
)


def generate_unique_member_id() -> str:
    member_id = f"RF-{random.randint(100000, 999999)}"
    while User.query.filter_by(member_id=member_id).first() is not None:
        member_id = f"RF-{random.randint(100000, 999999)}"
    return member_id


def get_user(uid: str) -> User | None:
    return db.session.get(User, uid) if uid else None


def get_user_by_email(email: str) -> User | None:
    return User.query.filter(func.lower(User.email) == (email or '').strip().lower()).first()


def create_user(email: str, password: str, name: str, role: str = 'customer', **profile) -> User:
    email = (email or '').strip().lower()
    name = (name or '').strip()
    if not email or '@' not in email:
        raise ValueError('A valid email is required')
    if not name:
        raise ValueError('Name is required')
    if len(password or '') < 6:
        raise ValueError('Password must be at least 6 characters')
    if role not in ROLES:
        raise ValueError(f"role must be one of {', '.join(ROLES)}")
    if get_user_by_email(email):
        raise ValueError('Email is already registered')
    extra = {k: (str(v).strip() or None) for k, v in profile.items() if k in PROFILE_FIELDS and v is not None}
    user = User(
        email=email,
        name=name,
        role=role,
        status='active',
        password_hash=generate_password_hash(password),
        created_at=billing.now(),
        **extra,
    )
    if role == 'customer':
        user.member_id = generate_unique_member_id()
        user.membership_status = 'no_plan'
    db.session.add(user)
    db.session.commit()
    append_audit('user.create', {'uid': user.uid, 'email': user.email, 'role': user.role})
    logger.info("User created: %s (%s)", user.email, user.role)
    return user


def authenticate(email: str, password: str) -> User | None:
    user = get_user_by_email(email)
    if not user or not check_password_hash(user.password_hash or '', password or ''):
        return None
    if user.status != 'active' and user.role != 'admin':
        raise PermissionError('Account is inactive. Please contact the front desk.')
    user.last_login_at = billing.now()
    db.session.commit()
    return user


def update_user_document(uid: str, data: dict, staff: bool = False) -> User:
    """Whitelisted profile update; staff may also change role, status and email."""
    user = get_user(uid)
    if not user:
        raise LookupError('User not found')
    allowed = STAFF_FIELDS if staff else PROFILE_FIELDS
    changed = {}
    for key in allowed:
        if key not in data:
            continue
        value = data.get(key)
        value = value.strip() if isinstance(value, str) else value
        if key == 'name' and not value:
            raise ValueError('Name cannot be empty')
        if key == 'role' and value not in ROLES:
            raise ValueError(f"role must be one of {', '.join(ROLES)}")
        if key == 'status' and value not in ('active', 'inactive'):
            raise ValueError('status must be active or inactive')
        if key == 'email':
            value = (value or '').lower()
            other = get_user_by_email(value)
            if not value or (other and other.uid != uid):
                raise ValueError('Email is already registered')
        if key not in ('role', 'status'):
            value = value or None
        setattr(user, key, value)
        changed[key] = value
    if changed.get('role') == 'customer' and not user.member_id:
        user.member_id = generate_unique_member_id()
    if changed:
        db.session.commit()
        append_audit('user.update', {'uid': uid, **changed})
    return user


def sync_membership_summary(uid: str, summary: dict) -> User | None:
    """Copy membership fields onto the user row. Unknown keys and None values are skipped."""
    user = get_user(uid)
    if not user:
        logger.warning("Cannot sync membership summary, user %s not found", uid)
        return None
    for key, value in summary.items():
        if key in MEMBERSHIP_SUMMARY_FIELDS and value is not None:
            setattr(user, key, value)
    db.session.commit()
    return user


def update_password(uid: str, current_password: str, new_password: str) -> None:
    user = get_user(uid)
    if not user:
        raise LookupError('User not found')
    if not check_password_hash(user.password_hash or '', current_password or ''):
        raise PermissionError('Current password is incorrect')
    if len(new_password or '') < 6:
        raise ValueError('Password must be at least 6 characters')
    user.password_hash = generate_password_hash(new_password)
    db.session.commit()
    append_audit('user.password.update', {'uid': uid})


def set_profile_image(uid: str, file_obj, filename: str) -> User:
    user = get_user(uid)
    if not user:
        raise LookupError('User not found')
    uploaded = cloudinary_client.upload_image(file_obj, filename, folder='profile-images')
    old_public_id = user.profile_image_public_id or cloudinary_client.extract_public_id(user.profile_image_url or '')
    user.profile_image_url = uploaded['secure_url']
    user.profile_image_public_id = uploaded['public_id']
    db.session.commit()
    if old_public_id and old_public_id != uploaded['public_id']:
        try:
            cloudinary_client.delete_image(old_public_id)
        except cloudinary_client.CloudinaryError:
            logger.warning("Could not delete previous profile image %s", old_public_id)
    append_audit('user.photo.update', {'uid': uid, 'public_id': uploaded['public_id']})
    return user


def delete_user(uid: str, actor_uid: str) -> dict:
    """Remove an account. Memberships go, payments stay for reporting but lose the personal fields."""
    actor = get_user(actor_uid)
    if not actor or actor.role != 'admin':
        raise PermissionError('Only admins can delete users')
    user = get_user(uid)
    if not user:
        raise LookupError('User not found')
    if uid == actor_uid:
        raise ValueError('Admins cannot delete their own account')
    removed = Membership.query.filter_by(uid=uid).delete(synchronize_session=False)
    db.session.commit()
    anonymized = billing.anonymize_user_payments(uid, actor_uid)
    public_id = user.profile_image_public_id
    email = user.email
    db.session.delete(user)
    db.session.commit()
    if public_id:
        try:
            cloudinary_client.delete_image(public_id)
        except cloudinary_client.CloudinaryError:
            logger.warning("Could not delete profile image %s of removed user", public_id)
    append_audit('user.delete', {'uid': uid, 'email': email, 'by': actor_uid,
                                 'memberships_removed': removed, 'payments_anonymized': anonymized})
    logger.info("User %s deleted by %s", email, actor_uid)
    return {'memberships_removed': removed, 'payments_anonymized': anonymized}


def list_users(role: str | None = None, search: str = '') -> list[User]:
    query = User.query
    if role:
        query = query.filter_by(role=role)
    q = (search or '').strip()
    if q:
        like = f"%{q}%"
        query = query.filter(User.name.ilike(like) | User.email.ilike(like) | User.phone.ilike(like)
                             | User.member_id.ilike(like))
    return query.order_by(User.created_at.desc()).all()


def find_duplicate_users() -> list[dict]:
    rows = (
        db.session.query(func.lower(User.email).label('email'), func.count(User.uid).label('n'))
        .group_by(func.lower(User.email))
        .having(func.count(User.uid) > 1)
        .all()
    )
    return [{'email': r.email, 'count': int(r.n)} for r in rows]
