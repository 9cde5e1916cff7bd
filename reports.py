"""
reports.py
Revenue reports, dashboard counters, membership status overview and CSV
exports (pandas).

Anonymized payments of deleted users still count toward revenue.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta

import pandas as pd

import billing
import expenses
import memberships
from models import Expense, Membership, MembershipRequest, Payment, User

logger = logging.getLogger(__name__)

PAYMENT_COLUMNS = ['id', 'created_at', 'user_name', 'user_email', 'plan_type', 'amount', 'payment_method',
                   'transaction_id', 'status', 'revenue_category', 'registration_fee', 'custom_registration_fee',
                   'discount', 'discount_amount', 'is_archived', 'is_anonymized']
EXPENSE_COLUMNS = ['id', 'created_at', 'title', 'category', 'amount', 'description', 'month', 'year']
MEMBERSHIP_COLUMNS = ['id', 'member', 'plan_type', 'amount', 'total_amount', 'start_date', 'end_date', 'status',
                      'renewal_count', 'is_visitor']


def parse_month(month: str) -> tuple[int, int]:
    try:
        dt = datetime.strptime(month or '', '%Y-%m')
    except ValueError:
        raise ValueError('month must be formatted YYYY-MM') from None
    return dt.year, dt.month


def _month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def _payments_between(start: datetime, end: datetime) -> list[Payment]:
    return (
        Payment.query.filter(Payment.created_at >= start, Payment.created_at < end)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )


def get_payments_by_month(month: str) -> list[Payment]:
    return _payments_between(*_month_bounds(*parse_month(month)))


def get_payments_by_year(year: int) -> list[Payment]:
    year = int(year)
    return _payments_between(datetime(year, 1, 1), datetime(year + 1, 1, 1))


def get_payments_by_quarter(year: int, quarter: str) -> list[Payment]:
    q = str(quarter).upper().lstrip('Q')
    if q not in ('1', '2', '3', '4'):
        raise ValueError('quarter must be one of Q1, Q2, Q3, Q4')
    first_month = (int(q) - 1) * 3 + 1
    start, _ = _month_bounds(int(year), first_month)
    _, end = _month_bounds(int(year), first_month + 2)
    return _payments_between(start, end)


def _revenue_summary(payments: list[Payment]) -> dict:
    by_plan = defaultdict(float)
    by_category = {'membership': 0.0, 'visitor': 0.0}
    for p in payments:
        amount = float(p.amount or 0)
        by_plan[p.plan_type or 'Unknown'] += amount
        by_category[p.revenue_category or 'membership'] = by_category.get(p.revenue_category or 'membership', 0.0) + amount
    return {
        'total_revenue': sum(float(p.amount or 0) for p in payments),
        'payment_count': len(payments),
        'by_plan': dict(by_plan),
        'membership_revenue': by_category['membership'],
        'visitor_revenue': by_category['visitor'],
    }


def monthly_revenue_summary(month: str) -> dict:
    summary = _revenue_summary(get_payments_by_month(month))
    summary.update(expenses.net_revenue_for_month(month, summary['total_revenue']))
    return summary


def yearly_revenue_summary(year: int) -> dict:
    year = int(year)
    payments = get_payments_by_year(year)
    months = {f"{year}-{m:02d}": 0.0 for m in range(1, 13)}
    for p in payments:
        months[f"{year}-{p.created_at.month:02d}"] += float(p.amount or 0)
    summary = _revenue_summary(payments)
    summary['months'] = [
        {'month': key, 'month_name': billing.MONTH_NAMES[i], 'revenue': value}
        for i, (key, value) in enumerate(months.items())
    ]
    summary.update(expenses.net_revenue_for_year(year, summary['total_revenue']))
    return summary


def quarterly_revenue_summary(year: int, quarter: str) -> dict:
    summary = _revenue_summary(get_payments_by_quarter(year, quarter))
    summary.update(year=int(year), quarter=f"Q{str(quarter).upper().lstrip('Q')}")
    return summary


def get_available_payment_months() -> list[str]:
    months = {p.created_at.strftime('%Y-%m') for p in Payment.query.with_entities(Payment.created_at).all()
              if p.created_at}
    return sorted(months, reverse=True)


def dashboard_stats(now: datetime | None = None) -> dict:
    now = now or billing.now()
    month = now.strftime('%Y-%m')
    revenue = sum(float(p.amount or 0) for p in get_payments_by_month(month))
    spent = expenses.get_monthly_expense_summary(month)['total']
    expiring = User.query.filter(
        User.role == 'customer',
        User.membership_status == 'active',
        User.membership_expiry_date.isnot(None),
        User.membership_expiry_date >= now,
        User.membership_expiry_date <= now + timedelta(days=memberships.RENEWAL_WINDOW_DAYS),
    ).count()
    return {
        'total_customers': User.query.filter_by(role='customer').count(),
        'active_memberships': User.query.filter_by(role='customer', membership_status='active').count(),
        'pending_requests': MembershipRequest.query.filter_by(status='pending').count(),
        'active_visitors': Membership.query.filter(Membership.is_visitor.is_(True), Membership.status == 'active',
                                                   Membership.end_date >= now).count(),
        'revenue_this_month': revenue,
        'expenses_this_month': spent,
        'net_revenue_this_month': revenue - spent,
        'expiring_soon': expiring,
    }


def membership_status_report(now: datetime | None = None) -> list[dict]:
    now = now or billing.now()
    rows = []
    for user in User.query.filter_by(role='customer').order_by(User.name).all():
        info = memberships.expiry_status(user.membership_expiry_date, False, now)
        rows.append({
            'uid': user.uid,
            'member_id': user.member_id,
            'name': user.name,
            'email': user.email,
            'plan': user.membership_plan,
            'expiry_date': user.membership_expiry_date.isoformat() if user.membership_expiry_date else None,
            'is_visitor': False,
            **info,
        })
    for v in Membership.query.filter_by(is_visitor=True).order_by(Membership.created_at.desc()).all():
        info = memberships.expiry_status(v.end_date, True, now)
        rows.append({
            'uid': None,
            'member_id': None,
            'name': v.visitor_name,
            'email': None,
            'plan': v.plan_type,
            'expiry_date': v.end_date.isoformat() if v.end_date else None,
            'is_visitor': True,
            **info,
        })
    return rows


# ---------- CSV exports ----------

def _csv_bytes(df: pd.DataFrame) -> bytes:
    logger.info("CSV export with %d rows", len(df))
    return df.to_csv(index=False).encode('utf-8')


def payments_csv(payments: list[Payment]) -> bytes:
    records = [{col: p.to_dict().get(col) for col in PAYMENT_COLUMNS} for p in payments]
    return _csv_bytes(pd.DataFrame(records, columns=PAYMENT_COLUMNS))


def expenses_csv(rows: list[Expense]) -> bytes:
    records = [{col: e.to_dict().get(col) for col in EXPENSE_COLUMNS} for e in rows]
    return _csv_bytes(pd.DataFrame(records, columns=EXPENSE_COLUMNS))


def memberships_csv(rows: list[Membership]) -> bytes:
    records = []
    for m in rows:
        d = m.to_dict()
        d['member'] = m.visitor_name if m.is_visitor else m.uid
        records.append({col: d.get(col) for col in MEMBERSHIP_COLUMNS})
    return _csv_bytes(pd.DataFrame(records, columns=MEMBERSHIP_COLUMNS))


def revenue_report_csv(year: int) -> bytes:
    summary = yearly_revenue_summary(year)
    by_month = expenses.get_yearly_expense_summary(year)['by_month']
    df = pd.DataFrame(summary['months'])
    df['expenses'] = df['month'].map(lambda m: by_month.get(m, 0.0))
    df['net_revenue'] = df['revenue'] - df['expenses']
    return _csv_bytes(df[['month', 'month_name', 'revenue', 'expenses', 'net_revenue']])
