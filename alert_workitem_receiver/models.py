"""Pydantic models for Alertmanager payloads and Azure DevOps work items."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

FIELD_PATH_PREFIX = "/fields/"
TITLE_FIELD = "System.Title"
DESCRIPTION_FIELD = "System.Description"
TAGS_FIELD = "System.Tags"
STATE_FIELD = "System.State"


class AlertStatus(str, Enum):
    """Status of an alert or of a whole alert group."""

    FIRING = "firing"
    RESOLVED = "resolved"


class Alert(BaseModel):
    """Individual alert within an Alertmanager notification."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    status: AlertStatus
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    starts_at: Optional[datetime] = Field(default=None, alias="startsAt")
    ends_at: Optional[datetime] = Field(default=None, alias="endsAt")
    generator_url: str = Field(default="", alias="generatorURL")
    fingerprint: str = ""


class AlertGroup(BaseModel):
    """Alertmanager webhook payload: one notification for one alert group."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    version: str = Field(default="4")
    group_key: str = Field(default="", alias="groupKey")
    truncated_alerts: int = Field(default=0, alias="truncatedAlerts")
    status: AlertStatus
    receiver: str = ""
    group_labels: Dict[str, str] = Field(default_factory=dict, alias="groupLabels")
    common_labels: Dict[str, str] = Field(default_factory=dict, alias="commonLabels")
    common_annotations: Dict[str, str] = Field(default_factory=dict, alias="commonAnnotations")
    external_url: str = Field(default="", alias="externalURL")
    alerts: List[Alert]

    @field_validator("alerts")
    @classmethod
    def validate_alerts(cls, v: List[Alert]) -> List[Alert]:
        """An alert group always carries at least one alert, and the first one
        must have a fingerprint since it keys the group's work item."""
        if not v:
            raise ValueError("alert group must contain at least one alert")
        if not v[0].fingerprint.strip():
            raise ValueError("first alert of the group must have a fingerprint")
        return v

    @property
    def fingerprint(self) -> str:
        """Fingerprint of the first alert, used as the group's deduplication key."""
        return self.alerts[0].fingerprint

    @property
    def firing(self) -> List[Alert]:
        return [a for a in self.alerts if a.status == AlertStatus.FIRING]

    @property
    def resolved(self) -> List[Alert]:
        return [a for a in self.alerts if a.status == AlertStatus.RESOLVED]


class TemplateContext(BaseModel):
    """Read-only values available to title, description and field templates."""

    model_config = ConfigDict(frozen=True)

    status: str
    alerts: List[Dict[str, Any]]
    firing_count: int
    resolved_count: int
    group_labels: Dict[str, str]
    common_labels: Dict[str, str]
    common_annotations: Dict[str, str]

    @classmethod
    def from_alert_group(cls, group: AlertGroup) -> "TemplateContext":
        """Build the context for an alert group.

        Group labels are sorted by key so ``group_labels.values()`` yields a
        stable order across deliveries.
        """
        return cls(
            status=group.status.value,
            alerts=[alert.model_dump(mode="json") for alert in group.alerts],
            firing_count=len(group.firing),
            resolved_count=len(group.resolved),
            group_labels=dict(sorted(group.group_labels.items())),
            common_labels=dict(group.common_labels),
            common_annotations=dict(group.common_annotations),
        )

    def as_variables(self) -> Dict[str, Any]:
        """Template variables: common annotations and labels as top-level names,
        overridden by the enumerated context fields."""
        variables: Dict[str, Any] = {}
        variables.update(self.common_annotations)
        variables.update(self.common_labels)
        variables.update(self.model_dump())
        return variables


class RenderedFields(BaseModel):
    """Output of the field renderer."""

    model_config = ConfigDict(frozen=True)

    title: str
    description: str
    fields: Dict[str, Any] = Field(default_factory=dict)


class FieldPatchOperation(BaseModel):
    """One JSON-patch instruction: set the field at ``path`` to ``value``."""

    model_config = ConfigDict(frozen=True)

    op: str = "add"
    path: str
    value: Any = None

    @classmethod
    def for_field(cls, field: str, value: Any) -> "FieldPatchOperation":
        path = field if field.startswith(FIELD_PATH_PREFIX) else f"{FIELD_PATH_PREFIX}{field}"
        return cls(path=path, value=value)


Document = List[FieldPatchOperation]


class WorkItemReference(BaseModel):
    """Work item reference returned by a WIQL query."""

    id: int
    url: str = ""


class TrackedItem(BaseModel):
    """Azure DevOps work item as seen by the receiver."""

    id: int
    rev: Optional[int] = None
    fields: Dict[str, Any] = Field(default_factory=dict)
    url: str = ""

    @property
    def title(self) -> str:
        return str(self.fields.get(TITLE_FIELD) or "")

    @property
    def tags(self) -> str:
        return str(self.fields.get(TAGS_FIELD) or "")

    @property
    def state(self) -> str:
        return str(self.fields.get(STATE_FIELD) or "")
