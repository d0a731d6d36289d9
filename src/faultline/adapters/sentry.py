import logging
import uuid
from typing import TYPE_CHECKING, Any, Optional

import sentry_sdk

from faultline.adapters.base import Adapter, Capabilities
from faultline.backtrace.processor import BacktraceProcessor
from faultline.breadcrumbs import breadcrumbs_for_sentry

if TYPE_CHECKING:
    from faultline.event import Event

logger = logging.getLogger(__name__)


class SentryAdapter(Adapter):
    """
    Forwards events to Sentry through `sentry_sdk`.  With a `dsn` the adapter owns a dedicated
    sentry client; without one, events go through whatever client the host initialized.
    """

    capabilities = Capabilities(
        errors=True,
        performance=True,
        sessions=True,
        check_ins=True,
        breadcrumbs=True,
        deployments=True,
        code_context=True,
        data_scrubbing=True,
    )

    def __init__(
        self,
        name: str = "sentry",
        dsn: Optional[str] = None,
        client: Optional[sentry_sdk.Client] = None,
        environment: Optional[str] = None,
        release: Optional[str] = None,
        **settings: Any,
    ):
        super().__init__(name, **settings)
        if client is None and dsn:
            client = sentry_sdk.Client(dsn=dsn, environment=environment, release=release)
        self.client = client
        self.environment = environment
        self.release = release
        self._frame_formatter = BacktraceProcessor()

    def capture(self, event: "Event") -> Optional[str]:
        payload = self.build_payload(event)
        if self.client is not None:
            return self.client.capture_event(payload)
        return sentry_sdk.capture_event(payload)

    def build_payload(self, event: "Event") -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event_id": uuid.uuid4().hex,
            "timestamp": event.timestamp.isoformat(),
            "level": event.level.value,
            "platform": "python",
            "environment": event.environment or self.environment,
            "transaction": event.transaction,
            "tags": event.tags,
            "user": event.user,
            "extra": event.extra,
            "breadcrumbs": {"values": breadcrumbs_for_sentry(event.breadcrumbs)},
        }

        release = event.context.get("release")
        if isinstance(release, dict):
            release = release.get("commit_sha") or release.get("tag")
        if release or self.release:
            payload["release"] = release or self.release

        if event.fingerprint:
            payload["fingerprint"] = [event.fingerprint]

        if event.exception is not None:
            exception: dict[str, Any] = {
                "type": type(event.exception).__name__,
                "value": event.exception_message,
                "module": type(event.exception).__module__,
            }
            if event.backtrace_frames:
                exception["stacktrace"] = {
                    "frames": self._frame_formatter.format_frames(
                        list(event.backtrace_frames), style="sentry"
                    )
                }
            payload["exception"] = {"values": [exception]}
        else:
            payload["message"] = event.message

        return {k: v for k, v in payload.items() if v not in (None, {}, "")}

    def flush(self, timeout: Optional[float] = None) -> None:
        if self.client is not None:
            self.client.flush(timeout=timeout)
        else:
            sentry_sdk.flush(timeout=timeout)

    def shutdown(self) -> None:
        super().shutdown()
        if self.client is not None:
            self.client.close()
