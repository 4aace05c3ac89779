"""Risk scoring capability for new escrow holds"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal

logger = logging.getLogger(__name__)

MIN_RISK_LEVEL = 0
MAX_RISK_LEVEL = 100

# Factors recorded on the tracking mirror's risk assessment
RISK_FACTORS = ["amount", "customer_history", "location"]


class RiskScorer(ABC):
    """Scores a payment hold between 0 (no risk) and 100"""

    @abstractmethod
    async def score(self, customer_id: str, amount: Decimal) -> int:
        ...


class NoOpRiskScorer(RiskScorer):
    """Default scorer: no fraud model is wired in, every hold scores 0"""

    async def score(self, customer_id: str, amount: Decimal) -> int:
        return MIN_RISK_LEVEL


def clamp_risk_level(value) -> int:
    """Coerce a scorer result into the 0-100 band stored on the escrow"""
    try:
        level = int(value)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ RISK_SCORE: non-numeric score {value!r}, recording {MAX_RISK_LEVEL}")
        return MAX_RISK_LEVEL
    return max(MIN_RISK_LEVEL, min(MAX_RISK_LEVEL, level))
