import logging

from cardflow.core import config

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Called once from the entry point; library modules only ever call getLogger(__name__).
    logging.basicConfig(level=(level or config.LOG_LEVEL).upper(), format=_FORMAT)
