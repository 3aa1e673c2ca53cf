# revenue.py
"""Instructor earnings, payout requests and the admin view of money flows."""
import csv
import datetime
import io
import logging
import math
from collections import namedtuple

from firebase_admin import firestore

from datastore import fetch_users_by_ids, fetch_where_in, get_cached, guarded, stream_dicts

logger = logging.getLogger(__name__)

PAYOUT_METHODS = ('Mobile Money', 'Virement')
PAYOUT_STATUSES = ('en_attente', 'valide', 'rejete')
COMMITTED_PAYOUT_STATUSES = ('valide', 'en_attente')
MONTHS_FR = ['janv.', 'févr.', 'mars', 'avr.', 'mai', 'juin', 'juil.', 'août', 'sept.', 'oct.', 'nov.', 'déc.']

RevenueSummary = namedtuple('RevenueSummary', 'total_revenue monthly_revenue instructor_share total_payouts available_balance trend')


class PayoutRejected(ValueError):
    pass


def format_currency(amount):
    amount = float(amount or 0)
    text = f"{amount:,.0f}" if amount.is_integer() else f"{amount:,.2f}"
    return f"{text.replace(',', ' ')} XOF"


def _amount(record):
    try: return float(record.get('amount') or 0)
    except (TypeError, ValueError): return 0.0


def _as_datetime(value):
    if isinstance(value, datetime.datetime): return value if value.tzinfo else value.replace(tzinfo=datetime.timezone.utc)
    return None


def start_of_month(now):
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def month_label(year, month):
    return f"{MONTHS_FR[month - 1]} {str(year)[-2:]}"


def monthly_trend(payments, factor=1.0):
    totals = {}
    for payment in payments:
        date = _as_datetime(payment.get('date'))
        if date is None: continue
        key = (date.year, date.month)
        totals[key] = totals.get(key, 0) + _amount(payment) * factor
    return [{'month': month_label(*key), 'revenue': round(totals[key], 2)} for key in sorted(totals)]


def summarize_revenue(payments, payouts, commission_rate, now=None):
    now = now or datetime.datetime.now(datetime.timezone.utc)
    completed = [p for p in payments if p.get('status') == 'Completed']
    total = sum(_amount(p) for p in completed)
    since = start_of_month(now)
    monthly = sum(_amount(p) for p in completed if (_as_datetime(p.get('date')) or _date_key({})) >= since)
    total_payouts = sum(_amount(p) for p in payouts if p.get('status') in COMMITTED_PAYOUT_STATUSES)
    share = total * (1 - commission_rate)
    return RevenueSummary(total, monthly, share, total_payouts, share - total_payouts, monthly_trend(completed, 1 - commission_rate))


def validate_payout(amount, method, summary, minimum):
    try: amount = float(amount)
    except (TypeError, ValueError): raise PayoutRejected("Le montant doit être supérieur à 0.")
    if not math.isfinite(amount) or amount <= 0: raise PayoutRejected("Le montant doit être supérieur à 0.")
    if method not in PAYOUT_METHODS: raise PayoutRejected("Veuillez sélectionner une méthode.")
    if amount > summary.available_balance:
        raise PayoutRejected(f"Le montant demandé dépasse votre solde disponible de {format_currency(summary.available_balance)}.")
    if amount < minimum:
        raise PayoutRejected(f"Le montant minimum pour un retrait est de {format_currency(minimum)}.")
    return amount


def instructor_payments(db, instructor_id):
    query = db.collection('payments').where(filter=firestore.FieldFilter('instructorId', '==', instructor_id))
    payments = stream_dicts(query)
    for payment in payments:
        payment.setdefault('courseTitle', 'Cours non spécifié'); payment.setdefault('studentName', 'Étudiant inconnu')
    return sorted(payments, key=_date_key, reverse=True)


def instructor_payouts(db, instructor_id):
    query = db.collection('payouts').where(filter=firestore.FieldFilter('instructorId', '==', instructor_id))
    return sorted(stream_dicts(query), key=_date_key, reverse=True)


def _date_key(record):
    return _as_datetime(record.get('date')) or datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


def instructor_summary(db, instructor_id, commission_rate, now=None):
    payments, payouts = instructor_payments(db, instructor_id), instructor_payouts(db, instructor_id)
    return payments, payouts, summarize_revenue(payments, payouts, commission_rate, now)


@guarded('payouts', 'create')
def request_payout(db, instructor_id, amount, method, commission_rate, minimum, now=None):
    _, _, summary = instructor_summary(db, instructor_id, commission_rate, now)
    amount = validate_payout(amount, method, summary, minimum)
    _, payout_ref = db.collection('payouts').add({
        'instructorId': instructor_id, 'amount': amount, 'method': method, 'status': 'en_attente', 'date': firestore.SERVER_TIMESTAMP,
    })
    logger.info("Payout %s of %s requested by %s", payout_ref.id, amount, instructor_id)
    return payout_ref.id


# --- Admin ---

def pending_payouts(db):
    query = db.collection('payouts').where(filter=firestore.FieldFilter('status', '==', 'en_attente'))
    payouts = stream_dicts(query)
    instructors = fetch_users_by_ids(db, [p.get('instructorId') for p in payouts])
    for payout in payouts: payout['instructor'] = instructors.get(payout.get('instructorId'), {})
    return sorted(payouts, key=_date_key)


def set_payout_status(db, payout_id, status):
    if status not in ('valide', 'rejete'): raise PayoutRejected(f"Statut de retrait inconnu : {status}")
    db.collection('payouts').document(payout_id).update({'status': status, 'processedAt': firestore.SERVER_TIMESTAMP})
    logger.info("Payout %s marked %s", payout_id, status)


def all_payments(db):
    query = db.collection('payments').order_by('date', direction=firestore.Query.DESCENDING)
    payments = stream_dicts(query)
    users = fetch_users_by_ids(db, [p.get('userId') for p in payments] + [p.get('instructorId') for p in payments])
    course_cache = {}
    for payment in payments:
        payment['student'] = users.get(payment.get('userId'), {})
        payment['instructor'] = users.get(payment.get('instructorId'), {})
        payment['course'] = get_cached(db, 'courses', payment['courseId'], course_cache) if payment.get('courseId') else {}
    return payments


def platform_totals(payments, now=None):
    now = now or datetime.datetime.now(datetime.timezone.utc)
    summary = summarize_revenue(payments, [], 0, now)
    return {'totalRevenue': summary.total_revenue, 'monthlyRevenue': summary.monthly_revenue}


def payments_csv(payments):
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(['ID', 'Date', 'Étudiant', 'Cours', 'Instructeur', 'Montant', 'Statut'])
    for p in payments:
        date = _as_datetime(p.get('date'))
        writer.writerow([
            p['id'], date.strftime('%Y-%m-%d %H:%M') if date else '', p.get('student', {}).get('fullName') or p.get('studentName', ''),
            p.get('course', {}).get('title') or p.get('courseTitle', ''), p.get('instructor', {}).get('fullName', ''), _amount(p), p.get('status', ''),
        ])
    return buffer.getvalue()


def instructor_dashboard(db, instructor_id, now=None):
    courses = stream_dicts(db.collection('courses').where(filter=firestore.FieldFilter('instructorId', '==', instructor_id)))
    course_ids = [c['id'] for c in courses]
    enrollments = fetch_where_in(db, 'enrollments', 'courseId', course_ids)
    reviews = fetch_where_in(db, 'reviews', 'courseId', course_ids)
    payments = [p for p in instructor_payments(db, instructor_id) if p.get('status') == 'Completed']
    summary = summarize_revenue(payments, [], 0, now)
    return {
        'courses': courses, 'publishedCourses': sum(1 for c in courses if c.get('status') == 'Published'),
        'totalStudents': len({e.get('studentId') for e in enrollments}), 'totalReviews': len(reviews),
        'averageRating': round(sum(r.get('rating', 0) for r in reviews) / len(reviews), 1) if reviews else 0,
        'monthlyRevenue': summary.monthly_revenue, 'trend': summary.trend,
    }
