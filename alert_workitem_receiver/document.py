"""Construction of JSON-patch documents for work item create and update calls."""

import re
from typing import Any, List, Mapping, Optional, Sequence

from alert_workitem_receiver.models import (
    DESCRIPTION_FIELD,
    STATE_FIELD,
    TAGS_FIELD,
    TITLE_FIELD,
    Document,
    FieldPatchOperation,
    RenderedFields,
)

FINGERPRINT_TAG_PREFIX = "Fingerprint:"
RESOLVED_MARKER = "[RESOLVED]"
TAG_SEPARATOR = "; "

_FIRING_MARKER_RE = re.compile(r"^\s*\[FIRING(?::\d+)?\]\s*", re.IGNORECASE)


def fingerprint_tag(fingerprint: str) -> str:
    return f"{FINGERPRINT_TAG_PREFIX}{fingerprint}"


def split_tags(tags: str) -> List[str]:
    """Split an Azure DevOps tag string (``"a; b; c"``) into its tags."""
    return [t.strip() for t in (tags or "").split(";") if t.strip()]


def merge_tags(existing: Sequence[str], extra: Sequence[str]) -> List[str]:
    """Append each tag of ``extra`` to ``existing`` unless already present."""
    merged = list(existing)
    for tag in extra:
        if tag not in merged:
            merged.append(tag)
    return merged


def mark_resolved(title: str) -> str:
    """Replace a leading firing marker with ``[RESOLVED]``.

    ``"[FIRING:2] HighLatency api"`` becomes ``"[RESOLVED] HighLatency api"``.
    Titles already containing the marker are returned unchanged.
    """
    if RESOLVED_MARKER in title:
        return title
    stripped = _FIRING_MARKER_RE.sub("", title, count=1)
    return f"{RESOLVED_MARKER} {stripped}".rstrip()


def build_document(
    rendered: RenderedFields,
    fingerprint: str,
    include_fingerprint: bool,
    base_fields: Optional[Mapping[str, Any]] = None,
    resolved: bool = False,
    state: Optional[str] = None,
    tags: Sequence[str] = (),
) -> Document:
    """Build the patch document for a work item.

    Operations are emitted in a fixed order: title, description, custom fields
    sorted by path, tags, state.

    Args:
        rendered: Rendered title, description and custom fields
        fingerprint: Alert group fingerprint
        include_fingerprint: Emit a tags operation carrying the fingerprint tag.
            When False no tags operation is emitted at all.
        base_fields: Current fields of the work item being updated, None on create
        resolved: Mark the title as resolved
        state: Value for System.State, omitted when None
        tags: Static tags to add next to the fingerprint tag

    Returns:
        Ordered list of patch operations
    """
    title = mark_resolved(rendered.title) if resolved else rendered.title

    document: Document = [
        FieldPatchOperation.for_field(TITLE_FIELD, title),
        FieldPatchOperation.for_field(DESCRIPTION_FIELD, rendered.description),
    ]

    for path, value in sorted(rendered.fields.items()):
        document.append(FieldPatchOperation.for_field(path, value))

    if include_fingerprint:
        existing = split_tags(str((base_fields or {}).get(TAGS_FIELD) or ""))
        merged = merge_tags(existing, [fingerprint_tag(fingerprint), *tags])
        document.append(FieldPatchOperation.for_field(TAGS_FIELD, TAG_SEPARATOR.join(merged)))

    if state:
        document.append(FieldPatchOperation.for_field(STATE_FIELD, state))

    return document
