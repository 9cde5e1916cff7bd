import argparse
import getpass

from app import app, _ensure_schema
import billing
import expenses
import memberships
import reports
import users
from models import verify_audit_chain


def setup_admin(email, name, password):
    password = password or getpass.getpass('Admin password: ')
    existing = users.get_user_by_email(email)
    if existing:
        users.update_user_document(existing.uid, {'role': 'admin', 'status': 'active'}, staff=True)
        print('Promoted', existing.email, 'to admin')
        return
    user = users.create_user(email, password, name, role='admin')
    print('Created admin', user.email, 'uid=', user.uid)


def export_csv(kind, out, month=None, year=None):
    if kind == 'payments':
        if month:
            rows = reports.get_payments_by_month(month)
        else:
            rows = reports.get_payments_by_year(year or billing.now().year)
        data = reports.payments_csv(rows)
    elif kind == 'expenses':
        rows = expenses.get_expenses_by_month(month) if month else expenses.get_expenses_by_year(year or billing.now().year)
        data = reports.expenses_csv(rows)
    elif kind == 'memberships':
        data = reports.memberships_csv(memberships.list_memberships())
    else:
        data = reports.revenue_report_csv(year or billing.now().year)
    with open(out, 'wb') as fh:
        fh.write(data)
    print('Exported to', out)


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    sub = parser.add_subparsers(dest='cmd')
    a = sub.add_parser('setup-admin'); a.add_argument('--email', required=True); a.add_argument('--name', default='Administrator'); a.add_argument('--password')
    sub.add_parser('check-status')
    sub.add_parser('archive')
    sub.add_parser('cleanup')
    sub.add_parser('verify-audit')
    e = sub.add_parser('export'); e.add_argument('kind', choices=['payments', 'expenses', 'memberships', 'revenue']); e.add_argument('--month'); e.add_argument('--year', type=int); e.add_argument('--out', default='export.csv')
    args = parser.parse_args()
    with app.app_context():
        _ensure_schema()
        if args.cmd == 'setup-admin':
            setup_admin(args.email, args.name, args.password)
        elif args.cmd == 'check-status':
            print(memberships.check_membership_statuses())
        elif args.cmd == 'archive':
            print('Archived', billing.archive_expired_payments(), 'payment records')
        elif args.cmd == 'cleanup':
            print('Deleted', billing.cleanup_archived_payments(), 'archived payment records')
        elif args.cmd == 'verify-audit':
            print('Audit chain OK' if verify_audit_chain() else 'Audit chain BROKEN')
        elif args.cmd == 'export':
            export_csv(args.kind, args.out, args.month, args.year)
        else:
            parser.print_help()
