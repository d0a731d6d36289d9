import logging
from typing import TYPE_CHECKING, Any, Optional

from faultline.adapters.base import Adapter, Capabilities
from faultline.backtrace.processor import BacktraceProcessor
from faultline.configuration import FaultlineConfig
from faultline.delivery import HttpTransport, RetryPolicy
from faultline.dependency_injection import inject, injected
from faultline.utils import json_dumps

if TYPE_CHECKING:
    from faultline.event import Event

logger = logging.getLogger(__name__)


class WebhookAdapter(Adapter):
    """
    Posts every event as JSON to a URL.  Delivery follows the transport retry policy from the
    configuration unless one is passed in.
    """

    capabilities = Capabilities(errors=True, breadcrumbs=True, code_context=True, data_scrubbing=True)

    @inject
    def __init__(
        self,
        name: str = "webhook",
        url: str = "",
        headers: Optional[dict[str, str]] = None,
        policy: Optional[RetryPolicy] = None,
        transport: Optional[HttpTransport] = None,
        frame_style: str = "sentry",
        config: FaultlineConfig = injected,
        **settings: Any,
    ):
        super().__init__(name, **settings)
        if transport is None and not url:
            raise ValueError(f"Webhook adapter '{name}' requires a url")
        self.transport = transport or HttpTransport(
            url,
            policy=policy or config.retry_policy,
            headers={"Content-Type": "application/json", **(headers or {})},
        )
        self.frame_style = frame_style
        self.release = config.release
        self._frame_formatter = BacktraceProcessor()

    def capture(self, event: "Event") -> Any:
        body = json_dumps(self.build_payload(event), separators=(",", ":")).encode("utf-8")
        return self.transport.post("", body)

    def build_payload(self, event: "Event") -> dict[str, Any]:
        payload = event.to_dict()
        if event.backtrace_frames:
            payload["backtrace_frames"] = self._frame_formatter.format_frames(
                list(event.backtrace_frames), style=self.frame_style
            )
        if self.release and "release" not in payload.get("context", {}):
            payload["release"] = self.release
        return payload

    def shutdown(self) -> None:
        super().shutdown()
        self.transport.close()
