"""Promo Pipeline - product description to short-form video generation.

The orchestrator in ``promopipe.orchestrator`` threads a single state object
through the stage collaborators in ``promopipe.pipeline`` and streams progress
events to the caller.
"""

import logging

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging for CLI and API entry points."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
