"""Reflect Alertmanager notifications into Azure DevOps work items."""

import asyncio
from typing import Optional

from loguru import logger

from alert_workitem_receiver.backend import BackendError, WorkItemBackend
from alert_workitem_receiver.config import ReceiverConfig
from alert_workitem_receiver.document import build_document
from alert_workitem_receiver.exceptions import (
    NotifyCancelledError,
    NotifyError,
    QueryError,
    RenderError,
    WriteError,
)
from alert_workitem_receiver.lookup import find_by_fingerprint
from alert_workitem_receiver.models import (
    AlertGroup,
    AlertStatus,
    Document,
    RenderedFields,
    TrackedItem,
)
from alert_workitem_receiver.template import FieldRenderer


class Receiver:
    """Creates, updates and resolves one work item per alert group.

    The receiver holds only read-only state and can serve concurrent
    notifications. It does not prevent two concurrent notifications for the
    same fingerprint from both creating a work item.
    """

    def __init__(self, config: ReceiverConfig, client: WorkItemBackend):
        self.config = config
        self.client = client
        self.renderer = FieldRenderer(config)

    async def notify(self, group: AlertGroup, cancel: Optional[asyncio.Event] = None) -> TrackedItem:
        """Process one alert group notification.

        Exactly one create or update call is made per successful notification.

        Args:
            group: Alert group from the Alertmanager webhook
            cancel: Optional event; once set, no further backend call is started

        Returns:
            The created or updated work item

        Raises:
            NotifyError: If any stage fails; ``stage`` names the failing step
        """
        fingerprint = group.fingerprint
        logger.info(
            f"Receiver {self.config.name}: {group.status.value} group {group.group_key!r} "
            f"with {len(group.alerts)} alerts, fingerprint {fingerprint}"
        )

        _check_cancelled(cancel, "lookup")
        try:
            existing = await find_by_fingerprint(
                self.client, fingerprint, self.config.project, self.config.on_duplicate
            )
        except QueryError as e:
            logger.error(f"Lookup failed for fingerprint {fingerprint}: {e}")
            raise NotifyError("lookup", str(e), e) from e

        try:
            rendered = self.renderer.render(group)
        except RenderError as e:
            raise NotifyError("render", str(e), e) from e

        resolved = group.status == AlertStatus.RESOLVED

        if existing is None:
            document = build_document(
                rendered,
                fingerprint,
                include_fingerprint=True,
                resolved=resolved,
                tags=self.config.tags,
            )
            _check_cancelled(cancel, "create")
            try:
                item = await self.client.create(self.config.project, self.config.item_type, document)
            except BackendError as e:
                raise self._write_failed("create", e) from e
            logger.info(f"Created work item {item.id} for fingerprint {fingerprint}")
            return item

        document = self.update_document(existing, rendered, fingerprint, resolved)
        _check_cancelled(cancel, "update")
        try:
            item = await self.client.update(existing.id, document)
        except BackendError as e:
            raise self._write_failed(f"update of work item {existing.id}", e) from e
        logger.info(f"Updated work item {existing.id} for fingerprint {fingerprint} ({group.status.value})")
        return item

    def update_document(
        self,
        existing: TrackedItem,
        rendered: RenderedFields,
        fingerprint: str,
        resolved: bool,
    ) -> Document:
        """Patch document for an existing work item.

        Resolving leaves tags untouched and moves the item to ``resolved_state``.
        A firing group keeps the fingerprint tag and reopens an item sitting in
        ``resolved_state`` when ``reopen_state`` is configured.
        """
        if resolved:
            return build_document(
                rendered,
                fingerprint,
                include_fingerprint=False,
                base_fields=existing.fields,
                resolved=True,
                state=self.config.resolved_state,
            )

        state = None
        if (
            self.config.reopen_state
            and self.config.resolved_state
            and existing.state == self.config.resolved_state
        ):
            logger.info(f"Reopening work item {existing.id} ({existing.state} -> {self.config.reopen_state})")
            state = self.config.reopen_state

        return build_document(
            rendered,
            fingerprint,
            include_fingerprint=True,
            base_fields=existing.fields,
            state=state,
            tags=self.config.tags,
        )

    def _write_failed(self, action: str, cause: BackendError) -> NotifyError:
        error = WriteError(f"{action} failed: {cause}")
        error.__cause__ = cause
        logger.error(f"Receiver {self.config.name}: {error}")
        return NotifyError("write", str(error), error)


def _check_cancelled(cancel: Optional[asyncio.Event], before: str) -> None:
    if cancel is not None and cancel.is_set():
        logger.warning(f"Notification cancelled before {before}")
        raise NotifyCancelledError(before)
