import logging
import os
import re
from typing import Annotated, Any, Callable, Literal, Mapping

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from faultline.dependency_injection import Module
from faultline.delivery import RetryPolicy

logger = logging.getLogger(__name__)

configuration_module = Module()
configuration_test_module = Module()

ENV_PREFIX = "FAULTLINE_"


def parse_int_from_env(data: Any) -> Any:
    if isinstance(data, str):
        return int(data)
    return data


def parse_float_from_env(data: Any) -> Any:
    if isinstance(data, str):
        return float(data)
    return data


def parse_list_from_env(data: Any) -> Any:
    if isinstance(data, str):
        return data.replace(",", " ").split()
    return data


def parse_bool_from_env(data: Any) -> Any:
    if not isinstance(data, str):
        return data
    if not data.lower() in ("yes", "true", "t", "y", "1", "on"):
        return False
    return True


def parse_optional_str(data: Any) -> Any:
    if isinstance(data, str):
        data = data.strip()
        return data or None
    return data


def drop_non_callable(data: Any) -> Any:
    if data is None or callable(data):
        return data
    logger.warning(f"Expected a callable but got {type(data).__name__}, ignoring it")
    return None


ParseInt = Annotated[int, BeforeValidator(parse_int_from_env)]
ParseFloat = Annotated[float, BeforeValidator(parse_float_from_env)]
ParseList = Annotated[list[str], BeforeValidator(parse_list_from_env)]
ParseBool = Annotated[bool, BeforeValidator(parse_bool_from_env)]
OptionalStr = Annotated[str | None, BeforeValidator(parse_optional_str)]
OptionalCallable = Annotated[Callable[..., Any] | None, BeforeValidator(drop_non_callable)]
PatternList = Annotated[list[re.Pattern | str], BeforeValidator(parse_list_from_env)]


class AdapterDefinition(BaseModel):
    type: str
    settings: dict[str, Any] = Field(default_factory=dict)


class FaultlineConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    enabled: ParseBool = True
    debug: ParseBool = False
    environment: OptionalStr = None
    release: OptionalStr = None

    # Dispatch
    async_dispatch: ParseBool = Field(
        default=True, validation_alias=AliasChoices("async_dispatch", "async")
    )
    async_max_workers: ParseInt = 4

    # Sampling and filtering
    sample_rate: ParseFloat = 1.0
    # A rate, a Sampler, or any callable taking (event, hint) and returning a bool.
    sampling_strategy: Any = None
    exclusion_filter: Any = None
    before_send: OptionalCallable = None
    error_handler: OptionalCallable = None

    # Scrubbing
    scrub_enabled: ParseBool = True
    scrub_fields: ParseList | None = None
    scrub_all: ParseBool = False
    whitelist_fields: ParseList = Field(default_factory=list)
    randomize_scrub_length: ParseBool = False

    # Fingerprinting
    fingerprint_callback: OptionalCallable = None
    # "default" opts into the bundled pattern table
    fingerprint_patterns: list[dict[str, Any]] | Literal["default"] | None = None
    normalize_fingerprint_paths: ParseBool = True
    normalize_fingerprint_ids: ParseBool = True
    fingerprint_include_environment: ParseBool = False

    # Backtraces
    backtrace_context_lines: ParseInt = 3
    backtrace_max_frames: ParseInt = 100
    backtrace_in_app_patterns: PatternList = Field(default_factory=list)
    backtrace_exclude_patterns: PatternList | None = None
    backtrace_strip_load_path: ParseBool = True
    backtrace_enable_code_context: ParseBool = True
    backtrace_follow_cause: ParseBool = False

    # Transport reliability, shared by every HTTP based adapter
    transport_timeout: ParseFloat = 5.0
    transport_max_retries: ParseInt = 3
    transport_initial_backoff: ParseFloat = 1.0
    transport_max_backoff: ParseFloat = 64.0
    transport_backoff_multiplier: ParseFloat = 2.0
    transport_jitter: ParseBool = True

    # Pipeline
    enable_pipeline: ParseBool = True
    pipeline: Any = None

    default_tags: dict[str, Any] = Field(default_factory=dict)
    default_user: dict[str, Any] = Field(default_factory=dict)
    default_extra: dict[str, Any] = Field(default_factory=dict)

    adapters: dict[str, AdapterDefinition] = Field(default_factory=dict)

    def register_adapter(self, name: str, type: str, **settings: Any) -> None:
        self.adapters[name] = AdapterDefinition(type=type, settings=settings)

    def use_logger(self, name: str = "logger", **settings: Any) -> None:
        self.register_adapter(name, "logger", **settings)

    def use_webhook(self, name: str = "webhook", **settings: Any) -> None:
        self.register_adapter(name, "webhook", **settings)

    def use_sentry(self, name: str = "sentry", **settings: Any) -> None:
        self.register_adapter(name, "sentry", **settings)

    @property
    def adapter_names(self) -> list[str]:
        return list(self.adapters)

    @property
    def default_context(self) -> dict[str, dict[str, Any]]:
        return {"tags": self.default_tags, "user": self.default_user, "extra": self.default_extra}

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            timeout=self.transport_timeout,
            max_retries=self.transport_max_retries,
            initial_backoff=self.transport_initial_backoff,
            max_backoff=self.transport_max_backoff,
            backoff_multiplier=self.transport_backoff_multiplier,
            jitter=self.transport_jitter,
        )

    def do_validation(self) -> bool:
        """
        Logs a warning for every setting that looks wrong.  Nothing here ever raises: a
        misconfigured error reporter must not take the host application down with it.
        """
        ok = True

        if not 0 <= self.sample_rate <= 1:
            logger.warning(f"sample_rate should be between 0 and 1, got {self.sample_rate}")
            ok = False

        if self.transport_timeout <= 0:
            logger.warning(f"transport_timeout should be positive, got {self.transport_timeout}")
            ok = False

        if self.transport_max_retries < 0:
            logger.warning(
                f"transport_max_retries should be non-negative, got {self.transport_max_retries}"
            )
            ok = False

        if self.transport_initial_backoff > self.transport_max_backoff:
            logger.warning(
                f"transport_initial_backoff ({self.transport_initial_backoff}) should be less than "
                f"transport_max_backoff ({self.transport_max_backoff})"
            )
            ok = False

        if not 1.0 <= self.transport_backoff_multiplier <= 10.0:
            logger.warning(
                "transport_backoff_multiplier should be between 1 and 10, "
                f"got {self.transport_backoff_multiplier}"
            )
            ok = False

        if self.backtrace_max_frames <= 0:
            logger.warning(
                f"backtrace_max_frames should be positive, got {self.backtrace_max_frames}"
            )
            ok = False

        if self.exclusion_filter is not None and not hasattr(
            self.exclusion_filter, "should_exclude"
        ):
            logger.warning("exclusion_filter does not implement should_exclude and will be ignored")
            ok = False

        for name, definition in self.adapters.items():
            if not definition.type:
                logger.warning(f"Adapter '{name}' has no type specified")
                ok = False

        if not self.adapters:
            logger.info("No adapters configured, captured events will not be delivered anywhere")

        return ok


def environ_to_settings(environ: Mapping[str, str]) -> dict[str, str]:
    return {
        key[len(ENV_PREFIX) :].lower(): value
        for key, value in environ.items()
        if key.startswith(ENV_PREFIX)
    }


@configuration_module.provider
def load_from_environment(environ: dict[str, str] | None = None) -> FaultlineConfig:
    return FaultlineConfig.model_validate(
        environ_to_settings(os.environ if environ is None else environ)
    )


@configuration_test_module.provider
def provide_test_defaults() -> FaultlineConfig:
    """
    Load defaults into the base config useful for tests
    """

    base = load_from_environment()

    base.async_dispatch = False
    base.environment = "test"
    base.backtrace_enable_code_context = False
    base.transport_max_retries = 0
    base.transport_jitter = False

    return base


configuration_module.enable()
