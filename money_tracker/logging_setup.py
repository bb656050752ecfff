import logging
import sys

HANDLER_NAME = "money_tracker.stdout"


def setup_logging(level: str = "INFO") -> None:
    """Configure logging to output to stdout with a timestamped format."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    # Repeated startups in one process keep a single stdout handler
    if any(handler.get_name() == HANDLER_NAME for handler in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Set lower log levels for some noisy libraries
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
