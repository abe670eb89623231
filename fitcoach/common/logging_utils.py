# fitcoach/common/logging_utils.py
import logging

LOG_FORMAT = "%(levelname)s | %(name)s | %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    """Configure root logging once for command line entry points."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
