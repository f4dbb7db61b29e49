"""Lookup of the work item correlated with an alert group's fingerprint."""

from typing import Optional

from loguru import logger

from alert_workitem_receiver.backend import BackendError, WorkItemBackend
from alert_workitem_receiver.document import fingerprint_tag
from alert_workitem_receiver.exceptions import AmbiguousMatchError, QueryError
from alert_workitem_receiver.models import TrackedItem


def _wiql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_fingerprint_query(fingerprint: str, project: str) -> str:
    """WIQL selecting work items in ``project`` tagged with the fingerprint tag."""
    return (
        "SELECT [System.Id] FROM WorkItems "
        f"WHERE [System.TeamProject] = {_wiql_literal(project)} "
        f"AND [System.Tags] CONTAINS {_wiql_literal(fingerprint_tag(fingerprint))} "
        "ORDER BY [System.Id]"
    )


async def find_by_fingerprint(
    client: WorkItemBackend,
    fingerprint: str,
    project: str,
    on_duplicate: str = "first",
) -> Optional[TrackedItem]:
    """Find the work item carrying the fingerprint tag and fetch its current fields.

    Args:
        client: Work item backend
        fingerprint: Alert group fingerprint
        project: Project to search in
        on_duplicate: ``first`` to use the first of several matches, ``fail``
            to raise AmbiguousMatchError

    Returns:
        The matching work item, None if nothing matches

    Raises:
        QueryError: If the query or the follow-up fetch fails
    """
    wiql = build_fingerprint_query(fingerprint, project)
    logger.debug(f"Querying work items: {wiql}")

    try:
        refs = await client.query(wiql)
    except BackendError as e:
        raise QueryError(f"query for fingerprint {fingerprint} failed: {e}") from e

    if not refs:
        logger.debug(f"No work item found for fingerprint {fingerprint}")
        return None

    if len(refs) > 1:
        ids = [ref.id for ref in refs]
        if on_duplicate == "fail":
            raise AmbiguousMatchError(fingerprint, ids)
        logger.warning(f"Found {len(ids)} work items for fingerprint {fingerprint}: {ids}, using {ids[0]}")

    item_id = refs[0].id
    try:
        item = await client.fetch(item_id)
    except BackendError as e:
        # A vanished item is a stale reference, never "absent".
        raise QueryError(f"fetching work item {item_id} for fingerprint {fingerprint} failed: {e}") from e

    logger.info(f"Found work item {item.id} for fingerprint {fingerprint}")
    return item
