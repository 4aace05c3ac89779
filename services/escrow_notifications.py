"""
Post-commit escrow notifications

The ledger calls the notifier only after a transition has committed. What a
notification says and how it is delivered belongs to the messaging subsystem;
the default notifier just logs the event.
"""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class EscrowNotifier:
    """Hooks fired after committed ledger transitions"""

    async def payment_released(self, release_data: Dict[str, Any]) -> None:
        """Landowner-facing: funds for a booking were transferred"""
        logger.info(
            f"📣 PAYMENT_RELEASED: {release_data.get('amount')} for booking "
            f"{release_data.get('booking_id')} to landowner {release_data.get('landowner_id')}"
        )

    async def dispute_opened(self, dispute_data: Dict[str, Any]) -> None:
        """Admin-facing: a hold was disputed and its release is frozen"""
        logger.info(
            f"📣 DISPUTE_OPENED: dispute {dispute_data.get('dispute_id')} on escrow "
            f"{dispute_data.get('escrow_id')} (booking {dispute_data.get('booking_id')})"
        )
