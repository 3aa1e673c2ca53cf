import pytest
import requests

import payments
from conftest import FakeFirestore, seed_course


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload, self.status_code = payload, status_code

    def raise_for_status(self):
        if self.status_code >= 400: raise requests.HTTPError(f"{self.status_code} Error")

    def json(self): return self.payload


class TestMonerooClient:

    def test_missing_or_placeholder_key_fails(self):
        assert not payments.MonerooClient(secret_key=None).verify('tx')['success']
        result = payments.MonerooClient(secret_key=payments.PLACEHOLDER_SECRET).verify('tx')
        assert not result['success'] and 'Clé secrète manquante' in result['error']

    def test_simulation_mode_succeeds_with_key(self):
        result = payments.MonerooClient(secret_key='sk_test').verify('tx1')
        assert result == {'success': True, 'data': {'status': 'successful', 'id': 'tx1'}}

    def test_live_mode_queries_gateway(self, monkeypatch):
        calls = []
        def fake_get(url, headers, timeout):
            calls.append((url, headers['Authorization']))
            return FakeResponse({'data': {'status': 'successful', 'id': 'tx1'}})
        monkeypatch.setattr(payments.requests, 'get', fake_get)
        result = payments.MonerooClient(secret_key='sk_live', mode='live').verify('tx1')
        assert result['success']
        assert calls == [("https://api.moneroo.io/v1/payments/tx1/verify", 'Bearer sk_live')]

    def test_live_mode_reports_unfinished_payment(self, monkeypatch):
        monkeypatch.setattr(payments.requests, 'get', lambda url, headers, timeout: FakeResponse({'data': {'status': 'pending'}}))
        result = payments.MonerooClient(secret_key='sk_live', mode='live').verify('tx1')
        assert not result['success'] and 'pending' in result['error']

    def test_live_mode_http_error(self, monkeypatch):
        monkeypatch.setattr(payments.requests, 'get', lambda url, headers, timeout: FakeResponse({}, status_code=500))
        assert not payments.MonerooClient(secret_key='sk_live', mode='live').verify('tx1')['success']

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv('MONEROO_SECRET_KEY', 'sk_env')
        monkeypatch.setenv('MONEROO_MODE', 'live')
        client = payments.MonerooClient.from_env()
        assert client.is_configured and client.mode == 'live'


class TestPromoCodes:

    def setup_method(self):
        self.db = FakeFirestore()

    def test_lookup_is_case_insensitive_and_active_only(self):
        promo_id = payments.create_promo_code(self.db, 'rentree', 25)
        assert payments.find_promo_code(self.db, ' Rentree ')['discountPercentage'] == 25
        payments.toggle_promo_code(self.db, promo_id)
        assert payments.find_promo_code(self.db, 'RENTREE') is None
        assert payments.find_promo_code(self.db, '') is None

    def test_duplicate_code_rejected(self):
        payments.create_promo_code(self.db, 'FLASH', 10)
        with pytest.raises(payments.PaymentError):
            payments.create_promo_code(self.db, 'flash', 20)

    @pytest.mark.parametrize('discount', [0, 150, 'abc'])
    def test_invalid_discount_rejected(self, discount):
        with pytest.raises(payments.PaymentError):
            payments.create_promo_code(self.db, 'X', discount)

    def test_discounted_price(self):
        assert payments.discounted_price(10000, {'discountPercentage': 25}) == 7500
        assert payments.discounted_price(10000) == 10000


class TestCheckout:

    def setup_method(self):
        self.db = FakeFirestore()
        self.course = seed_course(self.db, 'c1', price=10000)
        self.student = {'uid': 'stu', 'fullName': 'Awa'}

    def test_successful_payment_enrolls_student(self):
        payment = payments.start_checkout(self.db, self.student, self.course, {'code': 'FLASH', 'discountPercentage': 10})
        assert self.db.data(f"payments/{payment['paymentId']}")['status'] == 'Pending'
        assert payments.finalize_payment(self.db, payment, {'success': True, 'data': {'id': 'tx'}}, 'stu', self.course)
        stored = self.db.data(f"payments/{payment['paymentId']}")
        assert stored['status'] == 'Completed' and stored['amount'] == 9000 and stored['promoCode'] == 'FLASH'
        assert self.db.data('enrollments/stu_c1')['courseId'] == 'c1'

    def test_failed_payment_does_not_enroll(self):
        payment = payments.start_checkout(self.db, self.student, self.course)
        assert not payments.finalize_payment(self.db, payment, {'success': False, 'error': 'refusé'}, 'stu', self.course)
        assert self.db.data(f"payments/{payment['paymentId']}")['status'] == 'Failed'
        assert self.db.data('enrollments/stu_c1') is None

    def test_unpublished_course_cannot_be_bought(self):
        course = seed_course(self.db, 'draft', price=5000, status='Draft')
        with pytest.raises(payments.PaymentError):
            payments.start_checkout(self.db, self.student, course)
