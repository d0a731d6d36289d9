import unittest
from unittest.mock import MagicMock

import pytest
import requests

from faultline.delivery import RETRYABLE_STATUSES, HttpTransport, RetryPolicy
from faultline.errors import DeliveryError


def response(status_code: int, reason: str = "") -> MagicMock:
    return MagicMock(status_code=status_code, reason=reason)


class TestRetryPolicy(unittest.TestCase):
    def test_backoff_grows_until_cap(self):
        policy = RetryPolicy(initial_backoff=1.0, backoff_multiplier=2.0, max_backoff=5.0)
        assert [policy.backoff_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter(self):
        assert RetryPolicy(jitter=False).jitter_for(4.0) == 0.0
        assert 0.0 <= RetryPolicy(jitter=True).jitter_for(4.0) <= 2.0

    def test_retryable_statuses(self):
        policy = RetryPolicy()
        assert all(policy.is_retryable_status(s) for s in RETRYABLE_STATUSES)
        assert not policy.is_retryable_status(400)
        assert not policy.is_retryable_status(404)

    def test_max_tries(self):
        assert RetryPolicy(max_retries=3).max_tries == 4
        assert RetryPolicy(max_retries=0).max_tries == 1


class TestHttpTransport(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock(spec=requests.Session)
        self.sleep = MagicMock()
        self.policy = RetryPolicy(
            timeout=2.5, max_retries=2, initial_backoff=1.0, backoff_multiplier=3.0, jitter=False
        )
        self.transport = HttpTransport(
            "https://errors.example.com/",
            policy=self.policy,
            session=self.session,
            headers={"Content-Type": "application/json"},
            sleep=self.sleep,
        )

    def test_success(self):
        self.session.post.return_value = response(202)

        result = self.transport.post("/events", b"{}", headers={"X-Key": "k"})

        assert result.status_code == 202
        self.session.post.assert_called_once_with(
            "https://errors.example.com/events",
            data=b"{}",
            headers={"Content-Type": "application/json", "X-Key": "k"},
            timeout=2.5,
        )
        self.sleep.assert_not_called()

    def test_retries_transient_statuses(self):
        self.session.post.side_effect = [response(503), response(429), response(200)]

        assert self.transport.post("", b"{}").status_code == 200
        assert self.session.post.call_count == 3
        assert [c.args[0] for c in self.sleep.call_args_list] == [1.0, 3.0]

    def test_gives_up_after_max_tries(self):
        self.session.post.return_value = response(500)

        with pytest.raises(DeliveryError) as excinfo:
            self.transport.post("", b"{}")

        assert self.session.post.call_count == 3
        assert excinfo.value.status_code == 500

    def test_client_errors_are_not_retried(self):
        self.session.post.return_value = response(400, "Bad Request")

        with pytest.raises(DeliveryError) as excinfo:
            self.transport.post("", b"{}")

        assert self.session.post.call_count == 1
        assert excinfo.value.status_code == 400
        assert "Bad Request" in str(excinfo.value)

    def test_network_errors_fail_immediately(self):
        self.session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(DeliveryError) as excinfo:
            self.transport.post("", b"{}")

        assert self.session.post.call_count == 1
        assert isinstance(excinfo.value.cause, requests.ConnectionError)
        assert excinfo.value.response is None

    def test_close(self):
        self.transport.close()
        self.session.close.assert_called_once()

    def test_url_for(self):
        assert self.transport.url_for("") == "https://errors.example.com"
        assert self.transport.url_for("api/1/store") == "https://errors.example.com/api/1/store"
