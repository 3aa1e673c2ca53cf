# payments.py
"""
Course checkout against the Moneroo payment gateway.

Usage:
    gateway = MonerooClient.from_env()
    payment = start_checkout(db, student, course, promo)
    result = gateway.verify(payment['paymentId'])
    finalize_payment(db, payment, result, student, course)
"""
import logging
import os

import requests
from firebase_admin import firestore

from datastore import guarded
from learning import enroll_student

logger = logging.getLogger(__name__)

PLACEHOLDER_SECRET = "YOUR_MONEROO_SECRET_KEY_HERE"
CURRENCY = 'XOF'


class PaymentError(Exception):
    pass


class MonerooClient:
    """
    Verifies Moneroo transactions.

    In `simulation` mode (the default) a configured secret key is enough for a
    transaction to be reported successful; `live` mode asks the Moneroo API.
    """

    BASE_URL = "https://api.moneroo.io/v1"

    def __init__(self, public_key=None, secret_key=None, mode='simulation', timeout=10):
        self.public_key, self.secret_key, self.mode, self.timeout = public_key, secret_key, mode, timeout
        self.headers = {'Authorization': f'Bearer {self.secret_key}', 'Accept': 'application/json'}

    @classmethod
    def from_env(cls):
        return cls(os.environ.get('MONEROO_PUBLIC_KEY'), os.environ.get('MONEROO_SECRET_KEY'), os.environ.get('MONEROO_MODE', 'simulation'))

    @property
    def is_configured(self):
        return bool(self.secret_key) and self.secret_key != PLACEHOLDER_SECRET

    def verify(self, transaction_id):
        """
        Returns:
            dict: {'success': bool, 'data': dict} or {'success': False, 'error': str}
        """
        if not self.is_configured:
            logger.error("Moneroo secret key is not configured.")
            return {'success': False, 'error': 'Configuration serveur incomplète. Clé secrète manquante.'}
        if self.mode != 'live':
            return {'success': True, 'data': {'status': 'successful', 'id': transaction_id}}
        try:
            response = requests.get(f"{self.BASE_URL}/payments/{transaction_id}/verify", headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json().get('data') or {}
        except requests.RequestException as e:
            logger.exception("Error verifying Moneroo transaction %s", transaction_id)
            return {'success': False, 'error': str(e) or 'Erreur de vérification du paiement.'}
        if data.get('status') == 'successful':
            return {'success': True, 'data': data}
        return {'success': False, 'error': f"Paiement non finalisé. Statut : {data.get('status')}"}


def find_promo_code(db, code):
    code = (code or '').strip().upper()
    if not code: return None
    query = (db.collection('promoCodes').where(filter=firestore.FieldFilter('code', '==', code))
             .where(filter=firestore.FieldFilter('isActive', '==', True)).limit(1))
    doc = next(query.stream(), None)
    return {'id': doc.id, **doc.to_dict()} if doc else None


def discounted_price(price, promo=None):
    price = float(price or 0)
    if promo: price = price * (1 - float(promo.get('discountPercentage', 0)) / 100)
    return round(price, 2)


def create_promo_code(db, code, discount_percentage):
    code = (code or '').strip().upper()
    if not code: raise PaymentError("Le code est requis.")
    try: discount = float(discount_percentage)
    except (TypeError, ValueError): raise PaymentError("La réduction doit être un pourcentage.")
    if not 0 < discount <= 100: raise PaymentError("La réduction doit être comprise entre 1 et 100 %.")
    if next(db.collection('promoCodes').where(filter=firestore.FieldFilter('code', '==', code)).limit(1).stream(), None):
        raise PaymentError(f"Le code {code} existe déjà.")
    _, ref = db.collection('promoCodes').add({'code': code, 'discountPercentage': discount, 'isActive': True, 'createdAt': firestore.SERVER_TIMESTAMP})
    return ref.id


def toggle_promo_code(db, promo_id):
    promo_ref = db.collection('promoCodes').document(promo_id)
    promo = promo_ref.get()
    if not promo.exists: raise PaymentError("Code promo introuvable.")
    promo_ref.update({'isActive': not promo.to_dict().get('isActive', False)})


def list_promo_codes(db):
    return [{'id': doc.id, **doc.to_dict()} for doc in db.collection('promoCodes').order_by('createdAt', direction=firestore.Query.DESCENDING).stream()]


@guarded('payments', 'create')
def start_checkout(db, student, course, promo=None):
    if course.get('status') != 'Published': raise PaymentError("Ce cours n'est pas disponible à l'achat.")
    payment_ref = db.collection('payments').document()
    payment = {
        'paymentId': payment_ref.id, 'userId': student['uid'], 'instructorId': course['instructorId'], 'courseId': course['id'],
        'courseTitle': course.get('title', ''), 'studentName': student.get('fullName', ''), 'amount': discounted_price(course.get('price'), promo),
        'currency': CURRENCY, 'date': firestore.SERVER_TIMESTAMP, 'status': 'Pending', 'method': 'moneroo', 'promoCode': (promo or {}).get('code'),
    }
    payment_ref.set(payment)
    return payment


def finalize_payment(db, payment, verification, student_id, course):
    """Completes the payment and enrolls the student, or marks it failed. Returns True on success."""
    payment_ref = db.collection('payments').document(payment['paymentId'])
    if not verification.get('success'):
        payment_ref.update({'status': 'Failed', 'failureReason': verification.get('error', '')})
        logger.warning("Payment %s failed: %s", payment['paymentId'], verification.get('error'))
        return False
    payment_ref.update({'status': 'Completed', 'transactionId': (verification.get('data') or {}).get('id')})
    enroll_student(db, student_id, course)
    return True
