import datetime

import pytest

import revenue
from conftest import FakeFirestore

UTC = datetime.timezone.utc
NOW = datetime.datetime(2024, 5, 20, 12, 0, tzinfo=UTC)


def payment(amount, status='Completed', date=NOW, instructor='prof'):
    return {'amount': amount, 'status': status, 'date': date, 'instructorId': instructor}


class TestSummary:

    def test_balance_is_share_minus_committed_payouts(self):
        payments = [payment(10000), payment(5000), payment(9999, status='Pending'), payment(7000, status='Remboursé')]
        payouts = [{'amount': 2000, 'status': 'valide'}, {'amount': 1000, 'status': 'en_attente'}, {'amount': 5000, 'status': 'rejete'}]
        summary = revenue.summarize_revenue(payments, payouts, 0.3, now=NOW)
        assert summary.total_revenue == 15000
        assert summary.instructor_share == pytest.approx(10500)
        assert summary.total_payouts == 3000
        assert summary.available_balance == pytest.approx(7500)

    def test_monthly_revenue_counts_current_month(self):
        payments = [payment(4000), payment(6000, date=datetime.datetime(2024, 4, 30, tzinfo=UTC))]
        summary = revenue.summarize_revenue(payments, [], 0.3, now=NOW)
        assert summary.monthly_revenue == 4000
        assert [point['month'] for point in summary.trend] == ['avr. 24', 'mai 24']
        assert summary.trend[1]['revenue'] == pytest.approx(2800)

    def test_format_currency(self):
        assert revenue.format_currency(1234567) == "1 234 567 XOF"
        assert revenue.format_currency(None) == "0 XOF"


class TestPayoutValidation:

    def setup_method(self):
        self.summary = revenue.summarize_revenue([payment(10000)], [], 0.3, now=NOW)

    def test_accepts_valid_amount(self):
        assert revenue.validate_payout('6000', 'Mobile Money', self.summary, 5000) == 6000

    @pytest.mark.parametrize('amount', [0, -10, 'abc', None, 'nan', 'inf', '-inf'])
    def test_rejects_non_positive_amount(self, amount):
        with pytest.raises(revenue.PayoutRejected, match="supérieur à 0"):
            revenue.validate_payout(amount, 'Mobile Money', self.summary, 5000)

    def test_rejects_unknown_method(self):
        with pytest.raises(revenue.PayoutRejected, match="méthode"):
            revenue.validate_payout(6000, 'Chèque', self.summary, 5000)

    def test_balance_checked_before_minimum(self):
        with pytest.raises(revenue.PayoutRejected, match="solde disponible"):
            revenue.validate_payout(8000, 'Virement', self.summary, 9000)

    def test_rejects_below_minimum(self):
        with pytest.raises(revenue.PayoutRejected, match="minimum"):
            revenue.validate_payout(1000, 'Virement', self.summary, 5000)


class TestPayoutRequests:

    def setup_method(self):
        self.db = FakeFirestore()
        self.db.docs['payments/p1'] = payment(20000)
        self.db.docs['payouts/old'] = {'instructorId': 'prof', 'amount': 4000, 'status': 'valide', 'date': NOW}

    def test_request_creates_pending_payout(self):
        payout_id = revenue.request_payout(self.db, 'prof', 6000, 'Mobile Money', 0.3, 5000, now=NOW)
        stored = self.db.data(f"payouts/{payout_id}")
        assert stored['status'] == 'en_attente' and stored['amount'] == 6000 and stored['instructorId'] == 'prof'

    def test_pending_payouts_reduce_balance(self):
        revenue.request_payout(self.db, 'prof', 6000, 'Mobile Money', 0.3, 5000, now=NOW)
        with pytest.raises(revenue.PayoutRejected):
            revenue.request_payout(self.db, 'prof', 6000, 'Mobile Money', 0.3, 5000, now=NOW)
        assert len([p for p in self.db.docs if p.startswith('payouts/')]) == 2

    def test_non_finite_amount_is_not_stored(self):
        with pytest.raises(revenue.PayoutRejected):
            revenue.request_payout(self.db, 'prof', 'nan', 'Mobile Money', 0.3, 5000, now=NOW)
        assert not any(p.startswith('payouts/') and p != 'payouts/old' for p in self.db.docs)
        with pytest.raises(revenue.PayoutRejected, match="solde disponible"):
            revenue.request_payout(self.db, 'prof', '1000000', 'Mobile Money', 0.3, 5000, now=NOW)

    def test_admin_decision(self):
        revenue.set_payout_status(self.db, 'old', 'rejete')
        assert self.db.data('payouts/old')['status'] == 'rejete'
        with pytest.raises(revenue.PayoutRejected):
            revenue.set_payout_status(self.db, 'old', 'en_attente')

    def test_payments_csv(self):
        text = revenue.payments_csv([{'id': 'p1', 'date': NOW, 'studentName': 'Awa', 'courseTitle': 'Design', 'amount': 5000, 'status': 'Completed'}])
        lines = text.strip().splitlines()
        assert lines[0].startswith('ID,Date,')
        assert lines[1] == 'p1,2024-05-20 12:00,Awa,Design,,5000.0,Completed'
