import unittest
from unittest.mock import Mock, patch

from flask_sharing.exceptions import StoreUnavailable, Unauthorized
from flask_sharing.utils.transaction import (
    is_retryable_db_error,
    retry_on_transient,
    RetryPolicy,
)
from sqlalchemy.exc import IntegrityError, OperationalError


def operational_error(message="database is locked"):
    return OperationalError("UPDATE share_links", {}, Exception(message))


class Worker(object):
    def __init__(self, outcomes, attempts=3):
        self.repository = Mock()
        self.retry_policy = RetryPolicy(attempts=attempts, base_delay=0.1)
        self.outcomes = list(outcomes)
        self.calls = 0

    @retry_on_transient
    def run(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@patch("flask_sharing.utils.transaction.time.sleep")
class RetryOnTransientTestCase(unittest.TestCase):
    def test_success_first_time(self, sleep):
        worker = Worker(["done"])
        self.assertEqual(worker.run(), "done")
        self.assertEqual(worker.calls, 1)
        sleep.assert_not_called()
        worker.repository.rollback.assert_not_called()

    def test_retries_transient_errors(self, sleep):
        worker = Worker([operational_error(), operational_error(), "done"])
        with self.assertLogs("flask_sharing.utils.transaction", "WARNING") as logs:
            self.assertEqual(worker.run(), "done")
        self.assertEqual(worker.calls, 3)
        self.assertEqual(worker.repository.rollback.call_count, 2)
        self.assertEqual(sleep.call_count, 2)
        self.assertEqual(len(logs.records), 2)

    def test_gives_up_with_store_unavailable(self, sleep):
        worker = Worker([operational_error()] * 3)
        with self.assertRaises(StoreUnavailable) as cm:
            worker.run()
        self.assertEqual(cm.exception.http_status, 503)
        self.assertIsInstance(cm.exception.__cause__, OperationalError)
        self.assertEqual(worker.calls, 3)
        self.assertEqual(sleep.call_count, 2)

    def test_integrity_errors_propagate(self, sleep):
        error = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        worker = Worker([error, "done"])
        with self.assertRaises(IntegrityError):
            worker.run()
        self.assertEqual(worker.calls, 1)
        worker.repository.rollback.assert_called_once_with()
        sleep.assert_not_called()

    def test_domain_errors_propagate(self, sleep):
        worker = Worker([Unauthorized(), "done"])
        with self.assertRaises(Unauthorized):
            worker.run()
        self.assertEqual(worker.calls, 1)
        worker.repository.rollback.assert_not_called()


class RetryPolicyTestCase(unittest.TestCase):
    def test_backoff_grows_and_is_capped(self):
        policy = RetryPolicy(attempts=5, base_delay=0.1, max_delay=0.5)
        for _ in range(20):
            self.assertTrue(0.05 <= policy.delay(1) <= 0.15)
            self.assertTrue(0.1 <= policy.delay(2) <= 0.3)
            self.assertLessEqual(policy.delay(10), 0.5)

    def test_from_config(self):
        policy = RetryPolicy.from_config(
            {"SHARING_STORE_RETRY_ATTEMPTS": 0, "SHARING_STORE_RETRY_DELAY": "0.5"}
        )
        self.assertEqual(policy.attempts, 1)
        self.assertEqual(policy.base_delay, 0.5)

    def test_retryable_errors(self):
        self.assertTrue(is_retryable_db_error(operational_error()))
        self.assertTrue(is_retryable_db_error(Exception("Deadlock detected")))
        self.assertFalse(
            is_retryable_db_error(IntegrityError("INSERT", {}, Exception("duplicate")))
        )
