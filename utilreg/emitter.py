# utilreg/emitter.py
"""
Status-update emission.

An application announces that its interpretation of some assets changed by
appending a status update that points at the change description. The
registry never reads that description; it only requires that the
application has published an update module first, so every event in an
application's history can be read against a known schema.
"""

import logging
from typing import List

from .errors import ModuleNotConfigured, NotFound
from .events import APP_STATUS_UPDATED, EventLog, StatusUpdate
from .registry import ApplicationRegistry

logger = logging.getLogger(__name__)


class EventEmitter:
    """Appends status updates to applications' histories."""

    def __init__(self, registry: ApplicationRegistry, events: EventLog):
        self.registry = registry
        self.events = events

    def update_app_status(self, app_id: int, update_url: str, caller: str) -> StatusUpdate:
        """
        Record a status update for an application.

        Args:
            app_id: Application emitting the update
            update_url: Locator of the change description (not inspected)
            caller: Authenticated caller identity

        Returns:
            The appended StatusUpdate, with its per-application position

        Raises:
            NotFound: app_id has no record
            Unauthorized: caller is not the owner
            ModuleNotConfigured: no update module is set
        """
        with self.registry.owned(app_id, caller) as app:
            if not app.has_update_module:
                logger.warning(f"App {app_id} has no update module; status update refused")
                raise ModuleNotConfigured(app_id)
            notification = self.events.append(
                APP_STATUS_UPDATED, app_id=app_id, update_url=update_url,
            )

        logger.info(f"App {app_id} status update #{notification.position}: {update_url}")
        return StatusUpdate.from_notification(notification)

    def history(self, app_id: int) -> List[StatusUpdate]:
        """All status updates for an application, oldest first."""
        if app_id not in self.registry:
            raise NotFound(app_id)
        return self.events.status_updates(app_id)
