import logging
import sys

from settlement_backend.core.conf import settings

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s - %(message)s'


def setup_logging() -> None:
    """Configure root logging for the service process."""
    root = logging.getLogger()
    if any(getattr(h, '_settlement_handler', False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._settlement_handler = True
    root.addHandler(handler)
    root.setLevel(settings.LOG_LEVEL)

    # Stripe logs every request at INFO
    logging.getLogger('stripe').setLevel(logging.WARNING)
