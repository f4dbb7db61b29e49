import re
from typing import Any, Dict, List, Optional

import pytest

from alert_workitem_receiver.backend import BackendError, ItemNotFoundError
from alert_workitem_receiver.config import ReceiverConfig
from alert_workitem_receiver.document import split_tags
from alert_workitem_receiver.models import (
    AlertGroup,
    Document,
    TrackedItem,
    WorkItemReference,
)

_CONTAINS_RE = re.compile(r"CONTAINS '((?:[^']|'')*)'")


class FakeWorkItemBackend:
    """In-memory work item tracking service recording every call."""

    def __init__(self):
        self.work_items: Dict[int, TrackedItem] = {}
        self.next_id = 1
        self.create_calls: List[Dict[str, Any]] = []
        self.update_calls: List[Dict[str, Any]] = []
        self.fetch_calls: List[int] = []
        self.query_calls: List[str] = []
        self.fail: Dict[str, BackendError] = {}

    def add_item(self, item_id: int, fields: Dict[str, Any]) -> TrackedItem:
        item = TrackedItem(id=item_id, fields=dict(fields))
        self.work_items[item_id] = item
        self.next_id = max(self.next_id, item_id + 1)
        return item

    @staticmethod
    def _apply(fields: Dict[str, Any], document: Document) -> None:
        for op in document:
            fields[op.path[len("/fields/"):]] = op.value

    async def create(self, project: str, item_type: str, document: Document) -> TrackedItem:
        self.create_calls.append({"project": project, "item_type": item_type, "document": document})
        if "create" in self.fail:
            raise self.fail["create"]

        fields: Dict[str, Any] = {}
        self._apply(fields, document)
        fields["System.WorkItemType"] = item_type
        fields["System.TeamProject"] = project
        fields.setdefault("System.State", "New")
        return self.add_item(self.next_id, fields)

    async def update(self, item_id: int, document: Document) -> TrackedItem:
        self.update_calls.append({"id": item_id, "document": document})
        if "update" in self.fail:
            raise self.fail["update"]
        if item_id not in self.work_items:
            raise ItemNotFoundError(f"work item {item_id} not found", status_code=404)

        fields = dict(self.work_items[item_id].fields)
        self._apply(fields, document)
        self.work_items[item_id] = TrackedItem(id=item_id, fields=fields)
        return self.work_items[item_id]

    async def fetch(self, item_id: int) -> TrackedItem:
        self.fetch_calls.append(item_id)
        if "fetch" in self.fail:
            raise self.fail["fetch"]
        if item_id not in self.work_items:
            raise ItemNotFoundError(f"work item {item_id} not found", status_code=404)
        return self.work_items[item_id]

    async def query(self, wiql: str) -> List[WorkItemReference]:
        self.query_calls.append(wiql)
        if "query" in self.fail:
            raise self.fail["query"]

        match = _CONTAINS_RE.search(wiql)
        if not match:
            return []
        wanted = match.group(1).replace("''", "'")
        return [
            WorkItemReference(id=item.id)
            for item_id, item in sorted(self.work_items.items())
            if wanted in split_tags(item.tags)
        ]


def make_group(
    status: str = "firing",
    fingerprints: Optional[List[str]] = None,
    alert_statuses: Optional[List[str]] = None,
    **kwargs: Any,
) -> AlertGroup:
    """Build an alert group; every alert gets the group's status unless overridden."""
    fingerprints = fingerprints or ["test-fingerprint-123"]
    alert_statuses = alert_statuses or [status] * len(fingerprints)
    return AlertGroup(
        status=status,
        alerts=[
            {"status": s, "fingerprint": fp}
            for s, fp in zip(alert_statuses, fingerprints)
        ],
        **kwargs,
    )


@pytest.fixture
def backend() -> FakeWorkItemBackend:
    return FakeWorkItemBackend()


@pytest.fixture
def receiver_config() -> ReceiverConfig:
    return ReceiverConfig(
        name="default",
        project="TestProject",
        item_type="Bug",
        title=(
            '[{{ status | upper }}{% if status == "firing" %}:{{ firing_count }}{% endif %}] '
            '{{ group_labels.values() | join(" ") }}'
        ),
        description="Alert Description: {{ common_annotations.description }}",
    )


@pytest.fixture
def receiver_config_with_fields() -> ReceiverConfig:
    return ReceiverConfig(
        name="with-fields",
        project="TestProject",
        item_type="Task",
        title="[{{ status | upper }}] Alert Summary",
        description="Alert fired with {{ firing_count }} alerts",
        fields={
            "System.Priority": "High",
            "Custom.Field": "{{ severity }}",
        },
    )
