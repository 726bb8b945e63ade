"""
Order Collaborator Hooks.

Outbound calls from the payment core to whatever keeps order records.
"""

from typing import Protocol

from structlog import get_logger

from paygate.models.api import IntentStatus
from paygate.models.domain import DisputeDetails, ErrorDetail

logger = get_logger(__name__)


class OrderStatusHooks(Protocol):
    """Interface the order collaborator implements."""

    async def update_order_status(
        self,
        intent_id: str,
        new_status: IntentStatus,
        error: ErrorDetail | None = None,
    ) -> None:
        """
        Record a payment status change.

        Called after every applied webhook and after every provider outcome
        of process_payment for a known intent.
        """
        ...

    async def notify_dispute(self, charge_id: str, details: DisputeDetails) -> None:
        """Flag the order behind charge_id as disputed."""
        ...


class LoggingOrderHooks:
    """Default hooks that only emit structured log lines."""

    async def update_order_status(
        self,
        intent_id: str,
        new_status: IntentStatus,
        error: ErrorDetail | None = None,
    ) -> None:
        logger.info(
            "order_status_update",
            payment_intent_id=intent_id,
            status=new_status.value,
            error_code=error.code if error else None,
        )

    async def notify_dispute(self, charge_id: str, details: DisputeDetails) -> None:
        logger.warning(
            "order_dispute_created",
            charge_id=charge_id,
            dispute_id=details.dispute_id,
            reason=details.reason,
        )
