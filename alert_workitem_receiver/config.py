"""Receiver configuration loaded from YAML."""

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from alert_workitem_receiver.exceptions import ConfigError

DEFAULT_TITLE_TEMPLATE = (
    '[{{ status | upper }}{% if status == "firing" %}:{{ firing_count }}{% endif %}] '
    '{{ group_labels.values() | join(" ") }}'
)
DEFAULT_DESCRIPTION_TEMPLATE = "{{ common_annotations.description }}"

FieldValue = Union[str, bool, int, float]


class ReceiverConfig(BaseModel):
    """Configuration for one named receiver.

    Loaded once at startup and shared read-only by every notification.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Receiver name, matched against the payload's receiver")
    project: str = Field(..., description="Azure DevOps project name")
    item_type: str = Field(..., description="Work item type, e.g. 'Bug' or 'Task'")
    title: str = Field(default=DEFAULT_TITLE_TEMPLATE, description="Jinja2 template for System.Title")
    description: str = Field(
        default=DEFAULT_DESCRIPTION_TEMPLATE,
        description="Jinja2 template for System.Description",
    )
    fields: Dict[str, FieldValue] = Field(
        default_factory=dict,
        description=(
            "Field reference name to a Jinja2 template, e.g. {'Custom.Team': '{{ team }}'}; "
            "numbers and booleans are sent unchanged"
        ),
    )
    tags: List[str] = Field(default_factory=list, description="Static tags added next to the fingerprint tag")
    resolved_state: Optional[str] = Field(default=None, description="State set when the group resolves")
    reopen_state: Optional[str] = Field(
        default=None,
        description="State set when a firing group matches an item in resolved_state",
    )
    on_duplicate: Literal["first", "fail"] = Field(
        default="first",
        description="What to do when several work items carry the same fingerprint",
    )

    @field_validator("name", "project", "item_type")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v


class AzureDevOpsConfig(BaseModel):
    """Connection settings for the Azure DevOps organization."""

    organization_url: str = Field(..., description="e.g. https://dev.azure.com/acme")
    token_env: str = Field(
        default="AZURE_DEVOPS_TOKEN",
        description="Environment variable holding the personal access token",
    )
    timeout: float = Field(default=30, gt=0, le=300, description="HTTP timeout in seconds")

    @field_validator("organization_url")
    @classmethod
    def validate_organization_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("organization_url must start with http:// or https://")
        return v.rstrip("/")


class Config(BaseModel):
    """Top-level configuration file."""

    azure_devops: AzureDevOpsConfig
    serialize_by_fingerprint: bool = True
    receivers: List[ReceiverConfig]

    @field_validator("receivers")
    @classmethod
    def validate_unique_names(cls, v: List[ReceiverConfig]) -> List[ReceiverConfig]:
        names = [r.name for r in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate receiver names: {duplicates}")
        return v

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "Config":
        """Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigError: If the content is not a valid configuration
        """
        path = Path(yaml_path)

        if not path.exists():
            raise FileNotFoundError(f"Receiver configuration file not found: {yaml_path}")

        logger.info(f"Loading receiver configuration from {yaml_path}")

        with open(path, "r") as f:
            return cls.from_yaml_string(f.read())

    @classmethod
    def from_yaml_string(cls, yaml_content: str) -> "Config":
        """Load configuration from a YAML string.

        Every receiver entry inherits the keys of ``defaults``; ``fields`` and
        ``tags`` are merged with the receiver's own values taking precedence.

        Raises:
            ConfigError: If the content is not a valid configuration
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML: {e}") from e

        if not isinstance(data, dict) or "receivers" not in data:
            raise ConfigError("Invalid YAML structure: missing 'receivers' key")

        defaults = data.get("defaults") or {}
        receivers = [_merge_defaults(defaults, entry) for entry in data.get("receivers") or []]

        try:
            config = cls(
                azure_devops=data.get("azure_devops") or {},
                serialize_by_fingerprint=data.get("serialize_by_fingerprint", True),
                receivers=receivers,
            )
        except ValidationError as e:
            raise ConfigError(str(e)) from e

        logger.info(f"Loaded {len(config.receivers)} receiver configurations")
        return config

    def get_receiver(self, name: str) -> Optional[ReceiverConfig]:
        for receiver in self.receivers:
            if receiver.name == name:
                return receiver
        return None

    def list_receivers(self) -> List[str]:
        return [r.name for r in self.receivers]


def _merge_defaults(defaults: Dict[str, Any], entry: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(entry, dict):
        raise ConfigError(f"receiver entry must be a mapping, got {entry!r}")

    merged = {**defaults, **entry}
    merged["fields"] = {**(defaults.get("fields") or {}), **(entry.get("fields") or {})}

    tags = list(defaults.get("tags") or [])
    for tag in entry.get("tags") or []:
        if tag not in tags:
            tags.append(tag)
    merged["tags"] = tags
    return merged
