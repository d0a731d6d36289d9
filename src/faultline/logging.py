import logging

PACKAGE_LOGGER_NAME = "faultline"


class SubstringFilter(logging.Filter):
    def __init__(self, substrings: list[str]):
        super().__init__()
        self.substrings = substrings

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return not any(substring in message for substring in self.substrings)


# Noise from the transports we drive: urllib3 retry chatter repeats what our own retry logs say.
NOISY_SUBSTRINGS = [
    "Starting new HTTPS connection",
    "Starting new HTTP connection",
    "Resetting dropped connection",
]


def setup_logger(logger: logging.Logger, debug: bool = False):
    # Remove existing filters to avoid duplication
    for filter in logger.filters[:]:
        if isinstance(filter, SubstringFilter):
            logger.removeFilter(filter)

    logger.addFilter(SubstringFilter(NOISY_SUBSTRINGS))
    logger.setLevel(logging.DEBUG if debug else logging.INFO)


def setup_logging(debug: bool = False):
    """
    Configures the faultline package logger and the transport library loggers.  Handlers are
    left to the host application; a NullHandler keeps "no handler" warnings quiet.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    if not any(isinstance(h, logging.NullHandler) for h in package_logger.handlers):
        package_logger.addHandler(logging.NullHandler())

    for logger in [package_logger, logging.getLogger("urllib3.connectionpool")]:
        setup_logger(logger, debug=debug)
