import logging

PACKAGE_LOGGER = "match_image_labels"


def setup_logging(log_level: str = "INFO") -> None:
    """Configure root logging for the CLI and for each worker process."""
    level = getattr(logging, log_level.upper())
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    # When not in debug mode, only show our own debug messages
    if level != logging.DEBUG:
        # Set third-party loggers to WARNING
        for logger_name in list(logging.root.manager.loggerDict):
            if not logger_name.startswith(PACKAGE_LOGGER):
                logging.getLogger(logger_name).setLevel(logging.WARNING)
