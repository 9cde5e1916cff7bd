"""
expenses.py
Gym running costs, bucketed by the month they were entered in.
"""

from __future__ import annotations

import logging
from collections import defaultdict

import billing
from models import Expense, append_audit, db

logger = logging.getLogger(__name__)

EXPENSE_CATEGORIES = ('Utility Bills', 'Staff Fee', 'Equipment', 'Maintenance', 'Marketing', 'Other')


def _validate(title, amount, category) -> tuple[str, float, str]:
    title = (title or '').strip()
    if not title:
        raise ValueError('Title is required')
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise ValueError('Amount must be a number') from None
    if amount <= 0:
        raise ValueError('Amount must be greater than zero')
    if category not in EXPENSE_CATEGORIES:
        raise ValueError(f"category must be one of {', '.join(EXPENSE_CATEGORIES)}")
    return title, amount, category


def add_expense(title: str, amount: float, category: str, description: str = '',
                created_by: str | None = None) -> Expense:
    title, amount, category = _validate(title, amount, category)
    ts = billing.now()
    period = billing.period_fields(ts)
    expense = Expense(
        title=title,
        amount=amount,
        category=category,
        description=(description or '').strip(),
        month=period['month'],
        year=period['year'],
        created_at=ts,
        created_by=created_by,
    )
    db.session.add(expense)
    db.session.commit()
    append_audit('expense.create', {'expense_id': expense.id, 'amount': amount, 'category': category,
                                    'by': created_by})
    logger.info("Expense added: %s (%s %.2f)", expense.id, category, amount)
    return expense


def get_expense(expense_id: int) -> Expense | None:
    return db.session.get(Expense, expense_id)


def get_expenses_by_month(month: str) -> list[Expense]:
    return Expense.query.filter_by(month=month).order_by(Expense.created_at.desc(), Expense.id.desc()).all()


def get_expenses_by_year(year: int) -> list[Expense]:
    return Expense.query.filter_by(year=int(year)).order_by(Expense.created_at.desc(), Expense.id.desc()).all()


def _summarize(rows: list[Expense]) -> dict:
    breakdown = defaultdict(float)
    for e in rows:
        breakdown[e.category] += float(e.amount or 0)
    return {
        'total': sum(breakdown.values()),
        'breakdown': dict(breakdown),
        'count': len(rows),
    }


def get_monthly_expense_summary(month: str) -> dict:
    return dict(_summarize(get_expenses_by_month(month)), month=month)


def get_yearly_expense_summary(year: int) -> dict:
    rows = get_expenses_by_year(year)
    summary = _summarize(rows)
    by_month = defaultdict(float)
    for e in rows:
        by_month[e.month] += float(e.amount or 0)
    summary.update(year=int(year), by_month=dict(sorted(by_month.items())))
    return summary


def get_available_expense_months() -> list[str]:
    rows = db.session.query(Expense.month).distinct().all()
    return sorted((r.month for r in rows if r.month), reverse=True)


def update_expense(expense_id: int, data: dict, actor_uid: str | None = None) -> Expense:
    expense = get_expense(expense_id)
    if not expense:
        raise LookupError('Expense not found')
    title, amount, category = _validate(
        data.get('title', expense.title),
        data.get('amount', expense.amount),
        data.get('category', expense.category),
    )
    expense.title = title
    expense.amount = amount
    expense.category = category
    if 'description' in data:
        expense.description = (data.get('description') or '').strip()
    db.session.commit()
    append_audit('expense.update', {'expense_id': expense_id, 'amount': amount, 'category': category,
                                    'by': actor_uid})
    return expense


def delete_expense(expense_id: int, actor_uid: str | None = None) -> None:
    expense = get_expense(expense_id)
    if not expense:
        raise LookupError('Expense not found')
    db.session.delete(expense)
    db.session.commit()
    append_audit('expense.delete', {'expense_id': expense_id, 'by': actor_uid})
    logger.info("Expense %s deleted", expense_id)


def net_revenue_for_month(month: str, gross_revenue: float) -> dict:
    spent = get_monthly_expense_summary(month)['total']
    return {'month': month, 'gross_revenue': float(gross_revenue or 0), 'expenses': spent,
            'net_revenue': float(gross_revenue or 0) - spent}


def net_revenue_for_year(year: int, gross_revenue: float) -> dict:
    spent = get_yearly_expense_summary(year)['total']
    return {'year': int(year), 'gross_revenue': float(gross_revenue or 0), 'expenses': spent,
            'net_revenue': float(gross_revenue or 0) - spent}
