"""Logging setup for the CLI and server."""

import logging
import sys


class StageFormatter(logging.Formatter):
    """Formatter that tolerates records without a stage rank."""

    def format(self, record):
        if not hasattr(record, "rank"):
            record.rank = "-"
        return super().format(record)


def configure_logging(level=logging.INFO):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StageFormatter(
        "%(asctime)s %(levelname)s %(name)s [stage=%(rank)s] - %(message)s"
    ))
    logging.basicConfig(level=level, handlers=[handler], force=True)
