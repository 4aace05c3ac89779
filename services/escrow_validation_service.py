"""
Escrow Validation Service
Enforces the business rules a payment hold must pass before anything is authorized.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from models import UserProfile
from services.escrow_exceptions import ValidationError

logger = logging.getLogger(__name__)

AMOUNT_QUANTUM = Decimal("0.01")


class EscrowValidationService:
    """Service for validating hold requests"""

    @classmethod
    def validate_amount(cls, amount: Any, max_amount: Decimal) -> Decimal:
        """
        Validate and normalize a hold amount.

        Business Rules:
        - amount must be a finite number (bool and float NaN/inf rejected)
        - 0 < amount <= max_amount
        - no fractions of a cent

        Returns:
            The amount as a Decimal quantized to cents
        """
        value = cls._to_decimal(amount)

        if value <= 0:
            raise ValidationError(f"Invalid payment amount: {amount} must be positive")
        if value > max_amount:
            raise ValidationError(f"Invalid payment amount: {amount} exceeds maximum {max_amount}")
        if value != value.quantize(AMOUNT_QUANTUM):
            raise ValidationError(f"Invalid payment amount: {amount} has fractional cents")

        return value.quantize(AMOUNT_QUANTUM)

    @staticmethod
    def _to_decimal(amount: Any) -> Decimal:
        if amount is None or isinstance(amount, bool):
            raise ValidationError(f"Invalid payment amount: {amount!r}")
        try:
            value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid payment amount: {amount!r}")
        if not value.is_finite():
            raise ValidationError(f"Invalid payment amount: {amount!r}")
        return value

    @classmethod
    async def resolve_parties(
        cls, session: AsyncSession, customer_id: str, landowner_id: str
    ) -> Tuple[UserProfile, UserProfile]:
        """Both parties must exist as user profiles"""
        if not customer_id or not landowner_id:
            raise ValidationError("Invalid customer or landowner")
        if customer_id == landowner_id:
            raise ValidationError("Customer and landowner must be different parties")

        customer = await session.get(UserProfile, customer_id)
        landowner = await session.get(UserProfile, landowner_id)

        if customer is None or landowner is None:
            missing = [
                party_id
                for party_id, profile in ((customer_id, customer), (landowner_id, landowner))
                if profile is None
            ]
            logger.warning(f"⚠️ ESCROW_VALIDATION: unknown parties {missing}")
            raise ValidationError("Invalid customer or landowner")

        return customer, landowner

    @staticmethod
    def build_security_checks(customer: UserProfile, landowner: UserProfile, risk_level: int) -> Dict[str, Any]:
        return {
            "customerVerified": bool(customer.verified),
            "landownerVerified": bool(landowner.verified),
            "amountValidated": True,
            "riskLevel": risk_level,
        }
