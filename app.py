from flask import Flask, request, jsonify, send_file, session
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException
from datetime import datetime
from functools import wraps
from io import BytesIO
from dotenv import load_dotenv
import logging
import os
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

import attendance
import billing
import cloudinary_client
import expenses
import memberships
import receipts
import reports
import users
from models import Payment, db, get_setting, set_setting, verify_audit_chain

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(BASE_DIR, '.env'))

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = Flask(__name__)
db_path = os.path.join(BASE_DIR, "gym.db")
# Support DATABASE_URL for production (e.g., Postgres). Fallback to local SQLite.
db_url = os.getenv('DATABASE_URL')
if db_url and db_url.startswith('postgres://'):
    db_url = db_url.replace('postgres://', 'postgresql://', 1)
if db_url and 'render.com' in db_url and 'sslmode=' not in db_url:
    sep = '&' if '?' in db_url else '?'
    db_url = f"{db_url}{sep}sslmode=require"
app.config['SQLALCHEMY_DATABASE_URI'] = db_url or f"sqlite:///{db_path}"
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['MAX_CONTENT_LENGTH'] = 5 * 1024 * 1024
db.init_app(app)
Migrate(app, db)

app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-change-me')
# Cookie security settings
app.config['SESSION_COOKIE_HTTPONLY'] = True
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
if os.getenv('FLASK_SECURE_COOKIES', '1') not in ('0', 'false', 'False'):
    app.config['SESSION_COOKIE_SECURE'] = True

STAFF_ROLES = ('admin', 'receptionist')
SETTING_KEYS = ('gym_name', 'gym_address', 'gym_phone', 'gym_email', 'currency_code')


# Basic security headers
@app.after_request
def set_security_headers(resp):
    resp.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
    resp.headers['X-Content-Type-Options'] = 'nosniff'
    resp.headers['X-Frame-Options'] = 'DENY'
    resp.headers['Referrer-Policy'] = 'no-referrer'
    resp.headers['Permissions-Policy'] = 'geolocation=(), microphone=()'
    if os.getenv('ENABLE_HSTS', '0') in ('1', 'true', 'True'):
        resp.headers['Strict-Transport-Security'] = 'max-age=63072000; includeSubDomains; preload'
    return resp


# ---------- Errors ----------

@app.errorhandler(ValueError)
def handle_value_error(e):
    return jsonify({'ok': False, 'error': str(e)}), 400


@app.errorhandler(PermissionError)
def handle_permission_error(e):
    return jsonify({'ok': False, 'error': str(e) or 'Forbidden'}), 403


@app.errorhandler(LookupError)
def handle_lookup_error(e):
    if isinstance(e, (KeyError, IndexError)):
        return handle_unexpected(e)
    return jsonify({'ok': False, 'error': str(e)}), 404


@app.errorhandler(cloudinary_client.CloudinaryError)
def handle_cloudinary_error(e):
    app.logger.warning("Cloudinary error: %s", e)
    return jsonify({'ok': False, 'error': str(e)}), 502


@app.errorhandler(Exception)
def handle_unexpected(e):
    if isinstance(e, HTTPException):
        return jsonify({'ok': False, 'error': e.description}), e.code
    db.session.rollback()
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({'ok': False, 'error': 'Internal server error'}), 500


# ---------- Startup ----------

def _ensure_schema():
    db.create_all()


def _seed_admin():
    email = os.getenv('ADMIN_EMAIL')
    password = os.getenv('ADMIN_PASSWORD')
    if not email or not password or users.get_user_by_email(email):
        return
    users.create_user(email, password, os.getenv('ADMIN_NAME', 'Administrator'), role='admin')
    app.logger.info("Seeded admin account %s", email)


@app.before_request
def bootstrap_once():
    if app.config.get('BOOTSTRAPPED'):
        return
    app.config['BOOTSTRAPPED'] = True
    _ensure_schema()
    _seed_admin()
    if get_setting('gym_name') is None and os.getenv('GYM_NAME'):
        set_setting('gym_name', os.getenv('GYM_NAME'))
    start_scheduler_once()


def start_scheduler_once():
    if app.config.get('SCHEDULER_STARTED'):
        return
    app.config['SCHEDULER_STARTED'] = True
    if os.getenv('SCHEDULER_ENABLED', '1') in ('0', 'false', 'False', ''):
        return
    # Avoid duplicate on Flask reloader
    if os.environ.get('WERKZEUG_RUN_MAIN') == 'true' or not app.debug:
        scheduler = BackgroundScheduler()
        scheduler.add_job(membership_status_job, CronTrigger(minute=0))
        scheduler.add_job(payment_archive_job, CronTrigger(hour=2, minute=0))
        scheduler.add_job(archived_payment_cleanup_job, CronTrigger(day=1, hour=3, minute=0))
        scheduler.start()
        app.logger.info("Background scheduler started")


def membership_status_job():
    with app.app_context():
        try:
            memberships.check_membership_statuses()
        except Exception:
            db.session.rollback()
            app.logger.exception("Membership status check failed")


def payment_archive_job():
    with app.app_context():
        try:
            billing.archive_expired_payments()
        except Exception:
            db.session.rollback()
            app.logger.exception("Payment archival failed")


def archived_payment_cleanup_job():
    with app.app_context():
        try:
            billing.cleanup_archived_payments()
        except Exception:
            db.session.rollback()
            app.logger.exception("Archived payment cleanup failed")


# ---------- Auth helpers ----------

def current_user():
    uid = session.get('user_id')
    return users.get_user(uid) if uid else None


def login_required(view_func):
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        if not current_user():
            return jsonify({'ok': False, 'error': 'Login required'}), 401
        return view_func(*args, **kwargs)
    return wrapper


def roles_required(*roles):
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            user = current_user()
            if not user:
                return jsonify({'ok': False, 'error': 'Login required'}), 401
            if user.role not in roles:
                return jsonify({'ok': False, 'error': 'Forbidden'}), 403
            return view_func(*args, **kwargs)
        return wrapper
    return decorator


admin_required = roles_required('admin')
staff_required = roles_required(*STAFF_ROLES)


def _is_staff(user) -> bool:
    return bool(user and user.role in STAFF_ROLES)


def _self_or_staff(uid: str):
    user = current_user()
    if user.uid != uid and not _is_staff(user):
        raise PermissionError('Forbidden')
    return user


def _json() -> dict:
    return request.get_json(silent=True) or {}


def _parse_dt(value):
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValueError(f"Invalid date: {value}") from None


def _parse_date(value, field):
    try:
        return datetime.strptime(value or '', '%Y-%m-%d').date()
    except ValueError:
        raise ValueError(f"{field} must be formatted YYYY-MM-DD") from None


def _csv_response(data: bytes, filename: str):
    return send_file(BytesIO(data), mimetype='text/csv', as_attachment=True, download_name=filename)


# ---------- Auth ----------

@app.route('/api/auth/signup', methods=['POST'])
def signup():
    data = _json()
    user = users.create_user(
        data.get('email'), data.get('password'), data.get('name'), role='customer',
        **{k: data.get(k) for k in users.PROFILE_FIELDS if k != 'name'},
    )
    session['user_id'] = user.uid
    return jsonify({'ok': True, 'user': user.to_dict()}), 201


@app.route('/api/auth/login', methods=['POST'])
def login():
    data = _json()
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''
    if not email or not password:
        return jsonify({'ok': False, 'error': 'Email and password are required'}), 400
    user = users.authenticate(email, password)
    if not user:
        return jsonify({'ok': False, 'error': 'Invalid credentials'}), 401
    session.clear()
    session['user_id'] = user.uid
    app.logger.info("Login: %s (%s)", user.email, user.role)
    return jsonify({'ok': True, 'user': user.to_dict()})


@app.route('/api/auth/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'ok': True})


@app.route('/api/auth/me', methods=['GET'])
@login_required
def me():
    return jsonify({'ok': True, 'user': current_user().to_dict()})


@app.route('/api/auth/password', methods=['POST'])
@login_required
def change_password():
    data = _json()
    users.update_password(current_user().uid, data.get('current_password'), data.get('new_password'))
    return jsonify({'ok': True})


# ---------- Users ----------

@app.route('/api/users', methods=['GET'])
@staff_required
def list_users():
    rows = users.list_users(role=request.args.get('role'), search=request.args.get('q', ''))
    return jsonify({'ok': True, 'users': [u.to_dict() for u in rows]})


@app.route('/api/users', methods=['POST'])
@admin_required
def create_user():
    data = _json()
    user = users.create_user(
        data.get('email'), data.get('password'), data.get('name'), role=data.get('role') or 'customer',
        **{k: data.get(k) for k in users.PROFILE_FIELDS if k != 'name'},
    )
    return jsonify({'ok': True, 'user': user.to_dict()}), 201


@app.route('/api/users/duplicates', methods=['GET'])
@admin_required
def duplicate_users():
    return jsonify({'ok': True, 'duplicates': users.find_duplicate_users()})


@app.route('/api/users/<uid>', methods=['GET'])
@login_required
def get_user(uid):
    _self_or_staff(uid)
    user = users.get_user(uid)
    if not user:
        return jsonify({'ok': False, 'error': 'User not found'}), 404
    return jsonify({'ok': True, 'user': user.to_dict()})


@app.route('/api/users/<uid>', methods=['PUT'])
@login_required
def update_user(uid):
    actor = _self_or_staff(uid)
    data = _json()
    if actor.role != 'admin' and ('role' in data or 'status' in data):
        return jsonify({'ok': False, 'error': 'Only admins can change role or status'}), 403
    user = users.update_user_document(uid, data, staff=_is_staff(actor))
    return jsonify({'ok': True, 'user': user.to_dict()})


@app.route('/api/users/<uid>', methods=['DELETE'])
@admin_required
def delete_user(uid):
    result = users.delete_user(uid, current_user().uid)
    return jsonify({'ok': True, **result})


@app.route('/api/users/<uid>/photo', methods=['POST'])
@login_required
def upload_user_photo(uid):
    _self_or_staff(uid)
    file = request.files.get('photo')
    if not file or not file.filename:
        return jsonify({'ok': False, 'error': 'No file uploaded'}), 400
    user = users.set_profile_image(uid, file.stream, file.filename)
    return jsonify({
        'ok': True,
        'profile_image_url': user.profile_image_url,
        'display_url': cloudinary_client.profile_image_url(user.profile_image_url),
        'thumbnail_url': cloudinary_client.thumbnail_url(user.profile_image_url),
    })


@app.route('/api/users/<uid>/membership', methods=['GET'])
@login_required
def user_membership(uid):
    _self_or_staff(uid)
    m = memberships.get_user_membership(uid)
    data = m.to_dict() if m else None
    if m:
        data.update(memberships.expiry_status(m.end_date))
    return jsonify({'ok': True, 'membership': data})


@app.route('/api/users/<uid>/membership', methods=['POST'])
@staff_required
def assign_user_membership(uid):
    data = _json()
    result = memberships.assign_membership(
        uid,
        data.get('plan') or data.get('plan_type'),
        registration_fee=bool(data.get('registration_fee')),
        custom_registration_fee=data.get('custom_registration_fee', billing.REGISTRATION_FEE),
        discount=bool(data.get('discount')),
        discount_amount=data.get('discount_amount') or 0,
        actor_uid=current_user().uid,
        payment_method=data.get('payment_method') or 'Cash',
    )
    payment = result['payment']
    return jsonify({
        'ok': True,
        'action': result['action'],
        'total': result['total'],
        'membership': result['membership'].to_dict(),
        'payment': payment.to_dict() if payment else None,
    })


# ---------- Plans & memberships ----------

@app.route('/api/plans', methods=['GET'])
def list_plans():
    return jsonify({'ok': True, 'plans': [p.to_dict() for p in billing.PLANS.values()],
                    'registration_fee': billing.REGISTRATION_FEE})


@app.route('/api/membership-requests', methods=['POST'])
@login_required
def create_membership_request():
    data = _json()
    user = current_user()
    uid = data.get('uid') if _is_staff(user) and data.get('uid') else user.uid
    req = memberships.create_membership_request(
        uid,
        data.get('plan_type') or data.get('plan'),
        payment_method=data.get('payment_method') or 'Cash',
        transaction_id=data.get('transaction_id'),
        amount=data.get('amount'),
        start_date=_parse_dt(data.get('start_date')),
        end_date=_parse_dt(data.get('end_date')),
    )
    return jsonify({'ok': True, 'request': req.to_dict()}), 201


@app.route('/api/membership-requests', methods=['GET'])
@login_required
def list_membership_requests():
    user = current_user()
    rows = memberships.list_membership_requests(request.args.get('status'))
    if not _is_staff(user):
        rows = [r for r in rows if r.uid == user.uid]
    return jsonify({'ok': True, 'requests': [r.to_dict() for r in rows]})


@app.route('/api/membership-requests/<int:request_id>/approve', methods=['POST'])
@staff_required
def approve_membership_request(request_id):
    data = _json()
    additional = {
        'start_date': _parse_dt(data.get('start_date')),
        'end_date': _parse_dt(data.get('end_date')),
        'total_amount': data.get('total_amount'),
        'registration_fee': data.get('registration_fee'),
        'custom_registration_fee': data.get('custom_registration_fee'),
        'discount': data.get('discount'),
        'discount_amount': data.get('discount_amount'),
    }
    req = memberships.update_membership_request_status(request_id, 'active', current_user().uid,
                                                       additional=additional)
    return jsonify({'ok': True, 'request': req.to_dict()})


@app.route('/api/membership-requests/<int:request_id>/reject', methods=['POST'])
@staff_required
def reject_membership_request(request_id):
    reason = (_json().get('reason') or '').strip()
    if not reason:
        return jsonify({'ok': False, 'error': 'A rejection reason is required'}), 400
    req = memberships.update_membership_request_status(request_id, 'rejected', current_user().uid,
                                                       rejection_reason=reason)
    return jsonify({'ok': True, 'request': req.to_dict()})


@app.route('/api/memberships', methods=['GET'])
@staff_required
def list_memberships():
    include_visitors = request.args.get('visitors', '1') not in ('0', 'false', 'False')
    rows = memberships.list_memberships(request.args.get('status'), include_visitors=include_visitors)
    return jsonify({'ok': True, 'memberships': [m.to_dict() for m in rows]})


@app.route('/api/memberships/check-status', methods=['POST'])
@admin_required
def run_membership_status_check():
    return jsonify({'ok': True, **memberships.check_membership_statuses()})


@app.route('/api/visitors', methods=['POST'])
@staff_required
def add_visitor():
    data = _json()
    visitor = memberships.add_visitor(data.get('name'), data.get('phone'),
                                      payment_method=data.get('payment_method') or 'Cash',
                                      amount=data.get('amount'), actor_uid=current_user().uid)
    return jsonify({'ok': True, 'visitor': visitor.to_dict()}), 201


# ---------- Payments ----------

def _filtered_payments() -> list[Payment]:
    month = request.args.get('month')
    year = request.args.get('year', type=int)
    quarter = request.args.get('quarter')
    uid = request.args.get('uid')
    include_archived = request.args.get('include_archived', '0') not in ('0', 'false', 'False')
    if not (month or year or include_archived):
        return billing.get_active_payment_records(uid)
    if month:
        rows = reports.get_payments_by_month(month)
    elif year and quarter:
        rows = reports.get_payments_by_quarter(year, quarter)
    elif year:
        rows = reports.get_payments_by_year(year)
    else:
        rows = Payment.query.order_by(Payment.created_at.desc(), Payment.id.desc()).all()
    if uid:
        rows = [p for p in rows if p.uid == uid]
    if not include_archived:
        rows = [p for p in rows if not p.is_archived]
    return rows


@app.route('/api/payments', methods=['GET'])
@staff_required
def list_payments():
    rows = _filtered_payments()
    return jsonify({'ok': True, 'payments': [p.to_dict() for p in rows],
                    'total': sum(float(p.amount or 0) for p in rows)})


@app.route('/api/payments/archive', methods=['POST'])
@admin_required
def archive_payments():
    return jsonify({'ok': True, 'archived': billing.archive_expired_payments()})


@app.route('/api/payments/cleanup', methods=['POST'])
@admin_required
def cleanup_payments():
    return jsonify({'ok': True, 'deleted': billing.cleanup_archived_payments()})


# ---------- Receipts ----------

def _receipt_for_viewer(receipt_id: int):
    receipt = receipts.get_receipt(receipt_id)
    if not receipt:
        raise LookupError('Receipt not found')
    _self_or_staff(receipt.user_id)
    return receipt


@app.route('/api/receipts', methods=['GET'])
@login_required
def list_receipts():
    uid = request.args.get('user_id') or current_user().uid
    _self_or_staff(uid)
    return jsonify({'ok': True, 'receipts': [r.to_dict() for r in receipts.get_user_receipts(uid)]})


@app.route('/api/receipts/stats', methods=['GET'])
@login_required
def receipt_stats():
    uid = request.args.get('user_id') or current_user().uid
    _self_or_staff(uid)
    return jsonify({'ok': True, **receipts.get_user_receipt_stats(uid)})


@app.route('/api/receipts/<int:receipt_id>', methods=['GET'])
@login_required
def get_receipt(receipt_id):
    return jsonify({'ok': True, 'receipt': _receipt_for_viewer(receipt_id).to_dict()})


@app.route('/api/receipts/<int:receipt_id>/pdf', methods=['GET'])
@login_required
def receipt_pdf(receipt_id):
    data, filename = receipts.build_receipt_pdf(_receipt_for_viewer(receipt_id))
    return send_file(BytesIO(data), mimetype='application/pdf', as_attachment=True, download_name=filename)


# ---------- Expenses ----------

@app.route('/api/expenses', methods=['GET'])
@staff_required
def list_expenses():
    year = request.args.get('year', type=int)
    month = request.args.get('month') or (None if year else billing.now().strftime('%Y-%m'))
    rows = expenses.get_expenses_by_month(month) if month else expenses.get_expenses_by_year(year)
    return jsonify({'ok': True, 'expenses': [e.to_dict() for e in rows]})


@app.route('/api/expenses', methods=['POST'])
@admin_required
def add_expense():
    data = _json()
    expense = expenses.add_expense(data.get('title'), data.get('amount'), data.get('category'),
                                   data.get('description', ''), created_by=current_user().uid)
    return jsonify({'ok': True, 'expense': expense.to_dict()}), 201


@app.route('/api/expenses/<int:expense_id>', methods=['PUT'])
@admin_required
def update_expense(expense_id):
    expense = expenses.update_expense(expense_id, _json(), actor_uid=current_user().uid)
    return jsonify({'ok': True, 'expense': expense.to_dict()})


@app.route('/api/expenses/<int:expense_id>', methods=['DELETE'])
@admin_required
def delete_expense(expense_id):
    expenses.delete_expense(expense_id, actor_uid=current_user().uid)
    return jsonify({'ok': True})


@app.route('/api/expenses/summary', methods=['GET'])
@staff_required
def expense_summary():
    year = request.args.get('year', type=int)
    if year:
        return jsonify({'ok': True, 'summary': expenses.get_yearly_expense_summary(year)})
    month = request.args.get('month') or billing.now().strftime('%Y-%m')
    return jsonify({'ok': True, 'summary': expenses.get_monthly_expense_summary(month)})


@app.route('/api/expenses/months', methods=['GET'])
@staff_required
def expense_months():
    return jsonify({'ok': True, 'months': expenses.get_available_expense_months()})


@app.route('/api/expenses/categories', methods=['GET'])
@staff_required
def expense_categories():
    return jsonify({'ok': True, 'categories': list(expenses.EXPENSE_CATEGORIES)})


# ---------- Reports ----------

@app.route('/api/reports/dashboard', methods=['GET'])
@staff_required
def reports_dashboard():
    return jsonify({'ok': True, 'stats': reports.dashboard_stats()})


@app.route('/api/reports/monthly', methods=['GET'])
@staff_required
def reports_monthly():
    month = request.args.get('month') or billing.now().strftime('%Y-%m')
    return jsonify({'ok': True, 'report': reports.monthly_revenue_summary(month)})


@app.route('/api/reports/yearly', methods=['GET'])
@staff_required
def reports_yearly():
    year = request.args.get('year', type=int) or billing.now().year
    return jsonify({'ok': True, 'report': reports.yearly_revenue_summary(year)})


@app.route('/api/reports/quarterly', methods=['GET'])
@staff_required
def reports_quarterly():
    year = request.args.get('year', type=int) or billing.now().year
    quarter = request.args.get('quarter') or billing.period_fields(billing.now())['quarter']
    return jsonify({'ok': True, 'report': reports.quarterly_revenue_summary(year, quarter)})


@app.route('/api/reports/months', methods=['GET'])
@staff_required
def reports_months():
    return jsonify({'ok': True, 'months': reports.get_available_payment_months()})


@app.route('/api/reports/membership-status', methods=['GET'])
@staff_required
def reports_membership_status():
    rows = reports.membership_status_report()
    status = request.args.get('status')
    if status:
        rows = [r for r in rows if r['status'] == status]
    return jsonify({'ok': True, 'members': rows, 'count': len(rows)})


@app.route('/api/export/payments.csv', methods=['GET'])
@staff_required
def export_payments():
    return _csv_response(reports.payments_csv(_filtered_payments()), 'payments.csv')


@app.route('/api/export/expenses.csv', methods=['GET'])
@admin_required
def export_expenses():
    year = request.args.get('year', type=int)
    month = request.args.get('month')
    if month:
        rows = expenses.get_expenses_by_month(month)
    else:
        rows = expenses.get_expenses_by_year(year or billing.now().year)
    return _csv_response(reports.expenses_csv(rows), 'expenses.csv')


@app.route('/api/export/memberships.csv', methods=['GET'])
@staff_required
def export_memberships():
    rows = memberships.list_memberships(request.args.get('status'))
    return _csv_response(reports.memberships_csv(rows), 'memberships.csv')


@app.route('/api/export/revenue.csv', methods=['GET'])
@admin_required
def export_revenue():
    year = request.args.get('year', type=int) or billing.now().year
    return _csv_response(reports.revenue_report_csv(year), f"revenue_{year}.csv")


# ---------- Attendance ----------

@app.route('/api/attendance', methods=['POST'])
@login_required
def record_attendance():
    user = current_user()
    uid = _json().get('user_id') or user.uid
    _self_or_staff(uid)
    row, created = attendance.record_attendance(uid)
    return jsonify({'ok': True, 'attendance': row.to_dict(), 'created': created}), 201 if created else 200


@app.route('/api/attendance', methods=['GET'])
@login_required
def list_attendance():
    user = current_user()
    uid = request.args.get('user_id') or (None if _is_staff(user) else user.uid)
    if uid:
        _self_or_staff(uid)
    date_from = request.args.get('from')
    date_to = request.args.get('to')
    if date_from or date_to:
        start = _parse_date(date_from, 'from') if date_from else _parse_date(date_to, 'to')
        end = _parse_date(date_to, 'to') if date_to else start
        rows = attendance.get_attendance_by_date_range(start, end, user_id=uid)
    else:
        rows = attendance.get_all_attendance(user_id=uid)
    return jsonify({'ok': True, 'attendance': [a.to_dict() for a in rows], 'count': len(rows)})


@app.route('/api/attendance/daily', methods=['GET'])
@staff_required
def attendance_daily():
    today = billing.now().date()
    start = _parse_date(request.args.get('from'), 'from') if request.args.get('from') else today
    end = _parse_date(request.args.get('to'), 'to') if request.args.get('to') else today
    return jsonify({'ok': True, 'counts': attendance.daily_counts(start, end)})


# ---------- Settings & audit ----------

@app.route('/api/settings', methods=['GET'])
@admin_required
def get_settings():
    return jsonify({'ok': True, 'settings': {**receipts.gym_details(),
                                             'currency_code': get_setting('currency_code') or 'PKR'}})


@app.route('/api/settings', methods=['PUT'])
@admin_required
def update_settings():
    data = _json()
    unknown = set(data) - set(SETTING_KEYS)
    if unknown:
        return jsonify({'ok': False, 'error': f"Unknown settings: {', '.join(sorted(unknown))}"}), 400
    for key, value in data.items():
        set_setting(key, str(value or '').strip())
    return jsonify({'ok': True})


@app.route('/api/audit/verify', methods=['GET'])
@admin_required
def audit_verify():
    return jsonify({'ok': True, 'valid': verify_audit_chain()})


@app.route('/healthz')
def healthz():
    return jsonify({'ok': True})


if __name__ == '__main__':
    with app.app_context():
        _ensure_schema()
    debug_mode = os.getenv('FLASK_DEBUG', '0') == '1'
    app.run(debug=debug_mode, host='0.0.0.0', port=int(os.getenv('PORT', '5000')))
