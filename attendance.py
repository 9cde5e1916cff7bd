"""
attendance.py
Daily check-ins. One row per user per day; a repeat check-in returns the
existing row.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import func

import billing
from models import Attendance, User, db

logger = logging.getLogger(__name__)


def record_attendance(user_id: str, when: datetime | None = None) -> tuple[Attendance, bool]:
    """Returns (row, created)."""
    user = db.session.get(User, user_id) if user_id else None
    if not user:
        raise LookupError('User not found')
    when = when or billing.now()
    existing = Attendance.query.filter_by(user_id=user_id, date=when.date()).first()
    if existing:
        return existing, False
    row = Attendance(user_id=user_id, date=when.date(), check_in=when, present=True)
    db.session.add(row)
    db.session.commit()
    logger.info("Attendance recorded for %s on %s", user_id, row.date)
    return row, True


def get_attendance_by_date_range(start: date, end: date, user_id: str | None = None) -> list[Attendance]:
    if start > end:
        raise ValueError('start date must not be after end date')
    q = Attendance.query.filter(Attendance.date >= start, Attendance.date <= end)
    if user_id:
        q = q.filter_by(user_id=user_id)
    return q.order_by(Attendance.date.desc(), Attendance.check_in.desc()).all()


def get_all_attendance(user_id: str | None = None, limit: int = 500) -> list[Attendance]:
    q = Attendance.query
    if user_id:
        q = q.filter_by(user_id=user_id)
    return q.order_by(Attendance.check_in.desc()).limit(limit).all()


def daily_counts(start: date, end: date) -> dict[str, int]:
    rows = (
        db.session.query(Attendance.date, func.count(Attendance.id))
        .filter(Attendance.date >= start, Attendance.date <= end, Attendance.present.is_(True))
        .group_by(Attendance.date)
        .all()
    )
    return {d.isoformat(): int(n) for d, n in sorted(rows)}
