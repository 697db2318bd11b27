"""Interface for alert sinks (log, webhook, admin notice, email)."""

import abc

from ..models.monitoring import Alert


class AlertChannel(abc.ABC):
    """Abstract Base Class for delivering monitor alerts."""

    name: str = "channel"

    @abc.abstractmethod
    def send(self, alert: Alert) -> None:
        """Delivers an alert.

        Args:
            alert: The alert to deliver.

        Raises:
            AlertDeliveryError: If delivery failed.
        """
        pass
