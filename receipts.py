"""
receipts.py
Proof-of-payment documents. Only the newest MAX_RECEIPTS_PER_USER receipts
are kept for a member; older ones are deleted right after each insert.
"""

from __future__ import annotations

import logging
import os
import random
import time
from io import BytesIO

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas as _pdf_canvas

import billing
from models import Receipt, db, get_setting

logger = logging.getLogger(__name__)

MAX_RECEIPTS_PER_USER = 5

_RECEIPT_FIELDS = {
    'user_id', 'member_id', 'customer_name', 'membership_type', 'amount', 'payment_method', 'transaction_id',
    'start_date', 'end_date', 'status', 'plan_membership_fee', 'registration_fee', 'custom_registration_fee',
    'discount', 'discount_amount', 'total_amount',
}


def generate_receipt_number() -> str:
    return f"RF-{int(time.time() * 1000)}-{random.randint(0, 999)}"


def gym_details() -> dict:
    return {
        'gym_name': get_setting('gym_name') or os.getenv('GYM_NAME', 'RangeFit Gym'),
        'gym_address': get_setting('gym_address') or os.getenv('GYM_ADDRESS', 'Al Harmain Plaza, Range Rd, Rawalpindi, Pakistan'),
        'gym_phone': get_setting('gym_phone') or os.getenv('GYM_PHONE', '0332 5727216'),
        'gym_email': get_setting('gym_email') or os.getenv('GYM_EMAIL', 'info@rangefitgym.com'),
    }


def create_receipt(data: dict) -> Receipt:
    unknown = set(data) - _RECEIPT_FIELDS
    if unknown:
        raise ValueError(f"Unknown receipt fields: {', '.join(sorted(unknown))}")
    if not data.get('user_id'):
        raise ValueError('user_id required')
    number = generate_receipt_number()
    while Receipt.query.filter_by(receipt_number=number).first() is not None:
        number = generate_receipt_number()
    fields = dict(data)
    fields['registration_fee'] = bool(fields.get('registration_fee'))
    fields['discount'] = bool(fields.get('discount'))
    r = Receipt(receipt_number=number, created_at=billing.now(), **gym_details(), **fields)
    db.session.add(r)
    db.session.commit()
    logger.info("Receipt created: %s (%s)", r.id, r.receipt_number)
    try:
        enforce_receipt_retention(r.user_id)
    except Exception:
        db.session.rollback()
        logger.exception("Receipt retention failed for user %s", r.user_id)
    return r


def enforce_receipt_retention(user_id: str, keep: int = MAX_RECEIPTS_PER_USER) -> int:
    receipts = (
        Receipt.query.filter_by(user_id=user_id)
        .order_by(Receipt.created_at.desc(), Receipt.id.desc())
        .all()
    )
    stale = receipts[keep:]
    for r in stale:
        db.session.delete(r)
        logger.info("Deleted old receipt: %s", r.id)
    if stale:
        db.session.commit()
    return len(stale)


def get_user_receipts(user_id: str) -> list[Receipt]:
    return (
        Receipt.query.filter_by(user_id=user_id)
        .order_by(Receipt.created_at.desc(), Receipt.id.desc())
        .all()
    )


def get_receipt(receipt_id: int) -> Receipt | None:
    return db.session.get(Receipt, receipt_id)


def latest_receipt_for(user_id: str, transaction_id: str | None = None) -> Receipt | None:
    q = Receipt.query.filter_by(user_id=user_id)
    if transaction_id:
        match = q.filter_by(transaction_id=transaction_id).order_by(Receipt.created_at.desc()).first()
        if match:
            return match
    return q.order_by(Receipt.created_at.desc(), Receipt.id.desc()).first()


def get_user_receipt_stats(user_id: str) -> dict:
    receipts = get_user_receipts(user_id)
    last = receipts[0] if receipts else None
    return {
        'total_paid': sum(float(r.amount or 0) for r in receipts),
        'total_receipts': len(receipts),
        'last_payment': last.to_dict() if last else None,
        'last_payment_date': last.created_at.isoformat() if last and last.created_at else None,
    }


def _money(value, currency: str) -> str:
    return f"{currency} {float(value or 0):,.0f}"


def build_receipt_pdf(receipt: Receipt) -> tuple[bytes, str]:
    currency = get_setting('currency_code') or 'PKR'
    buf = BytesIO()
    page_w, page_h = A4
    c = _pdf_canvas.Canvas(buf, pagesize=A4)
    margin = 36
    box_w = page_w - margin * 2
    box_h = 420
    box_x = margin
    box_y = page_h - margin - box_h
    # Background
    c.setFillColor(HexColor("#111827"))
    c.roundRect(box_x, box_y, box_w, box_h, 12, fill=1, stroke=0)
    # Accent bar
    c.setFillColor(HexColor("#DC2626"))
    c.roundRect(box_x, box_y + box_h - 28, box_w, 28, 12, fill=1, stroke=0)
    c.setFillColor(HexColor("#FFFFFF"))
    c.setFont("Helvetica-Bold", 14)
    c.drawString(box_x + 16, box_y + box_h - 20, f"{receipt.gym_name or 'Gym'} - PAYMENT RECEIPT")
    # Gym contact
    c.setFillColor(HexColor("#9CA3AF"))
    c.setFont("Helvetica", 9)
    c.drawString(box_x + 16, box_y + box_h - 44, receipt.gym_address or '')
    c.drawString(box_x + 16, box_y + box_h - 56, f"{receipt.gym_phone or ''}   {receipt.gym_email or ''}")
    # Details
    rows = [
        ("Receipt No", receipt.receipt_number),
        ("Date", receipt.created_at.strftime('%Y-%m-%d') if receipt.created_at else ''),
        ("Member ID", receipt.member_id or 'N/A'),
        ("Customer", receipt.customer_name),
        ("Plan", receipt.membership_type),
        ("Valid From", receipt.start_date.strftime('%Y-%m-%d') if receipt.start_date else '-'),
        ("Valid Until", receipt.end_date.strftime('%Y-%m-%d') if receipt.end_date else '-'),
        ("Payment Method", receipt.payment_method or 'Cash'),
        ("Transaction", receipt.transaction_id or '-'),
    ]
    y = box_y + box_h - 86
    c.setFont("Helvetica", 11)
    for label, value in rows:
        c.setFillColor(HexColor("#9CA3AF"))
        c.drawString(box_x + 16, y, label)
        c.setFillColor(HexColor("#E5E7EB"))
        c.drawString(box_x + 150, y, str(value or ''))
        y -= 18
    # Fee breakdown
    y -= 8
    c.setFillColor(HexColor("#374151"))
    c.rect(box_x + 16, y + 12, box_w - 32, 1, fill=1, stroke=0)
    breakdown = []
    if receipt.plan_membership_fee is not None:
        breakdown.append(("Membership Fee", _money(receipt.plan_membership_fee, currency)))
    if receipt.registration_fee:
        breakdown.append(("Registration Fee", _money(receipt.custom_registration_fee, currency)))
    if receipt.discount:
        breakdown.append(("Discount", "- " + _money(receipt.discount_amount, currency)))
    total = receipt.total_amount if receipt.total_amount is not None else receipt.amount
    breakdown.append(("Total", _money(total, currency)))
    for label, value in breakdown:
        bold = label == "Total"
        c.setFont("Helvetica-Bold" if bold else "Helvetica", 12 if bold else 11)
        c.setFillColor(HexColor("#FFFFFF" if bold else "#E5E7EB"))
        c.drawString(box_x + 16, y, label)
        c.drawRightString(box_x + box_w - 16, y, value)
        y -= 18
    c.setFillColor(HexColor("#F87171"))
    c.setFont("Helvetica-Oblique", 9)
    c.drawString(box_x + 16, box_y + 12, "This is a computer generated receipt.")
    c.showPage()
    c.save()
    buf.seek(0)
    return buf.read(), f"receipt_{receipt.receipt_number}.pdf"
