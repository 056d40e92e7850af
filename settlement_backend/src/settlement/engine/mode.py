"""
Operating Mode Resolution

Resolves compressed (testing) mode once per invocation. The persisted
app_config switch wins over the TESTING_MODE setting so the mode can be
flipped without a redeploy.
"""

import logging

from settlement_backend.core.conf import settings
from settlement_backend.src.settlement.repository import SettlementRepository
from settlement_backend.src.settlement.shared.config import TESTING_MODE_CONFIG_KEY
from settlement_backend.src.settlement.shared.timing import SettlementConfig

logger = logging.getLogger(__name__)


async def resolve_settlement_config(repository: SettlementRepository) -> SettlementConfig:
    """Build the SettlementConfig for one run."""
    try:
        value = await repository.get_app_config(TESTING_MODE_CONFIG_KEY)
    except Exception as e:
        logger.warning(f"[TIMING] Could not read app_config.{TESTING_MODE_CONFIG_KEY}, using settings: {e}")
        value = None

    if value is not None:
        compressed = str(value).strip().lower() == 'true'
    else:
        compressed = settings.TESTING_MODE

    if compressed:
        logger.info("[TIMING] Compressed (testing) mode active")
    return SettlementConfig(compressed_mode=compressed)
