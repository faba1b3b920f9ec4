"""
Logging event publisher adapter - Implements EventPublisher protocol.

Writes domain events to the application log. Delivery is at-least-once
from the orchestrator's point of view; log consumers must be idempotent.
"""

import logging

from src.domain.models import CredentialEnrolledViaRecovery

logger = logging.getLogger(__name__)


class LoggingEventPublisher:
    """Implements EventPublisher protocol via structured log lines."""

    def publish(self, event: CredentialEnrolledViaRecovery) -> None:
        logger.info(
            "[EVENT] credential enrolled via recovery user=%s credential=%s at=%s",
            event.user.id,
            event.credential.id.hex(),
            event.occurred_at.isoformat(),
        )
