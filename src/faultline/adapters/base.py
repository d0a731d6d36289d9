import abc
import logging
from typing import TYPE_CHECKING, Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from faultline.event import Event

logger = logging.getLogger(__name__)


class Capabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    errors: bool = True
    performance: bool = False
    sessions: bool = False
    feature_flags: bool = False
    check_ins: bool = False
    breadcrumbs: bool = False
    deployments: bool = False
    metrics: bool = False
    profiling: bool = False
    security: bool = False
    code_context: bool = False
    data_scrubbing: bool = False


class Adapter(abc.ABC):
    """
    A destination for events.  `capture` may raise (typically `DeliveryError`); the Router
    isolates every adapter from the others and from the caller.
    """

    capabilities: ClassVar[Capabilities] = Capabilities()

    def __init__(self, name: str, enabled: bool = True, **settings: Any):
        self.name = name
        self.settings = settings
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def supports(self, capability: str) -> bool:
        return bool(getattr(self.capabilities, capability, False))

    @abc.abstractmethod
    def capture(self, event: "Event") -> Any:
        pass

    def flush(self, timeout: Optional[float] = None) -> None:
        pass

    def shutdown(self) -> None:
        self.disable()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, enabled={self.enabled})"
