"""
Delivery-retry contract for HTTP based adapters.

Only a fixed set of status codes is considered transient; anything else (including network
errors) fails the delivery immediately with a `DeliveryError`.  Backoff grows geometrically per
attempt up to `max_backoff`, with optional jitter so that many processes failing together do not
retry in lockstep.
"""

import logging
import random
import time
from typing import Any, Callable

import requests
from pydantic import BaseModel, ConfigDict

from faultline.errors import DeliveryError, RetryableStatusError
from faultline.utils import MaxTriesExceeded, backoff_on_exception

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeout: float = 5.0
    max_retries: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 64.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    @property
    def max_tries(self) -> int:
        return max(self.max_retries, 0) + 1

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in RETRYABLE_STATUSES

    def backoff_for(self, attempt: int) -> float:
        """Delay before the retry following failed `attempt` (1-based), without jitter."""
        delay = self.initial_backoff * (self.backoff_multiplier ** max(attempt - 1, 0))
        return min(delay, self.max_backoff)

    def jitter_for(self, delay: float) -> float:
        if not self.jitter:
            return 0.0
        return random.uniform(0, delay * 0.5)


class HttpTransport:
    """
    Posts encoded payloads to a base URL with the retry semantics of a `RetryPolicy`.
    """

    def __init__(
        self,
        base_url: str,
        policy: RetryPolicy | None = None,
        session: requests.Session | None = None,
        headers: dict[str, str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.policy = policy or RetryPolicy()
        self.session = session or requests.Session()
        self.headers = headers or {}
        self._sleep = sleep

    def url_for(self, path: str) -> str:
        if not path:
            return self.base_url
        return f"{self.base_url}/{path.lstrip('/')}"

    def post(self, path: str, body: bytes, headers: dict[str, str] | None = None) -> Any:
        url = self.url_for(path)
        request_headers = {**self.headers, **(headers or {})}
        policy = self.policy
        last_delay: list[float] = [0.0]

        def scaler(num_tries: int) -> float:
            last_delay[0] = policy.backoff_for(num_tries)
            return last_delay[0]

        @backoff_on_exception(
            lambda e: isinstance(e, RetryableStatusError),
            max_tries=policy.max_tries,
            sleep_sec_scaler=scaler,
            jitterer=lambda: policy.jitter_for(last_delay[0]),
            sleep=self._sleep,
        )
        def attempt():
            response = self.session.post(
                url, data=body, headers=request_headers, timeout=policy.timeout
            )
            if policy.is_retryable_status(response.status_code):
                raise RetryableStatusError(response)
            return response

        try:
            response = attempt()
        except MaxTriesExceeded as e:
            cause = e.__cause__
            response = getattr(cause, "response", None)
            raise DeliveryError(
                f"HTTP {getattr(response, 'status_code', '?')} after {policy.max_tries} tries",
                response=response,
                cause=cause,
            ) from e
        except requests.RequestException as e:
            raise DeliveryError(f"Network error: {e}", cause=e) from e

        if not 200 <= response.status_code < 300:
            raise DeliveryError(
                f"HTTP {response.status_code}: {getattr(response, 'reason', '')}",
                response=response,
            )

        return response

    def close(self) -> None:
        self.session.close()
