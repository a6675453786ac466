"""
Profile Completion Scoring.

score() turns a raw profile document into a CompletionSnapshot: the
weighted completion ratio plus one IncompleteFieldReport per field that
has not earned its full weight. Pure: the same document and catalog
always produce an equal snapshot.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from numbers import Real
from typing import Any, Callable, Mapping

from .catalog import DEFAULT_CATALOG, FieldCatalog, FieldDefinition, FieldKind
from .errors import SchemaMismatch

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IncompleteFieldReport:
    """A field that has not earned its full required weight."""
    field: str
    display_name: str
    message: str
    required_weight: int
    current_weight: int

    def to_dict(self) -> dict:
        """Serialize using the wire keys the app already consumes."""
        return {
            "field": self.field,
            "displayName": self.display_name,
            "message": self.message,
            "required": self.required_weight,
            "current": self.current_weight,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IncompleteFieldReport":
        return cls(
            field=data["field"],
            display_name=data.get("displayName", data["field"]),
            message=data.get("message", ""),
            required_weight=int(data.get("required") or 0),
            current_weight=int(data.get("current") or 0),
        )


@dataclass(frozen=True)
class CompletionSnapshot:
    """
    Result of one scoring pass.

    computed_at is excluded from equality so re-scoring an unchanged
    document compares equal to the previous snapshot.
    """
    ratio: float
    incomplete_fields: tuple[IncompleteFieldReport, ...] = ()
    computed_at: datetime = field(default_factory=_utc_now, compare=False)

    @property
    def is_complete(self) -> bool:
        return self.ratio >= 1.0

    @property
    def percent(self) -> int:
        return int(self.ratio * 100)

    def missing_fields(self) -> list[str]:
        return [r.field for r in self.incomplete_fields]

    def to_dict(self) -> dict:
        return {
            "ratio": self.ratio,
            "isComplete": self.is_complete,
            "incompleteFields": [r.to_dict() for r in self.incomplete_fields],
            "computedAt": self.computed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompletionSnapshot":
        computed_at = _utc_now()
        raw_ts = data.get("computedAt")
        if raw_ts:
            try:
                computed_at = datetime.fromisoformat(raw_ts.replace("Z", "+00:00"))
            except (AttributeError, ValueError):
                logger.warning(f"Ignoring unparseable computedAt: {raw_ts!r}")
        ratio = min(max(float(data.get("ratio", 0.0)), 0.0), 1.0)
        return cls(
            ratio=ratio,
            incomplete_fields=tuple(
                IncompleteFieldReport.from_dict(r) for r in data.get("incompleteFields", [])
            ),
            computed_at=computed_at,
        )

    @classmethod
    def empty(cls, catalog: FieldCatalog = DEFAULT_CATALOG) -> "CompletionSnapshot":
        """Snapshot of a document with nothing filled in."""
        return score({}, catalog)


# =============================================================================
# Per-kind Scoring
# =============================================================================


def _score_text(definition: FieldDefinition, value: Any) -> int:
    if not isinstance(value, str):
        raise SchemaMismatch(definition.name, "text", type(value))
    return definition.required_weight if value.strip() else 0


def _score_list(definition: FieldDefinition, value: Any) -> int:
    if not isinstance(value, (list, tuple)):
        raise SchemaMismatch(definition.name, "list", type(value))
    if definition.is_counted:
        return min(len(value), definition.required_weight)
    return definition.required_weight if value else 0


def _score_geopoint(definition: FieldDefinition, value: Any) -> int:
    # Presence only; coordinates are not validated.
    return definition.required_weight


def _score_boolean(definition: FieldDefinition, value: Any) -> int:
    if not isinstance(value, bool):
        raise SchemaMismatch(definition.name, "boolean", type(value))
    return definition.required_weight


def _score_number(definition: FieldDefinition, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise SchemaMismatch(definition.name, "number", type(value))
    return definition.required_weight


_SCORERS: dict[FieldKind, Callable[[FieldDefinition, Any], int]] = {
    FieldKind.TEXT: _score_text,
    FieldKind.LIST: _score_list,
    FieldKind.GEOPOINT: _score_geopoint,
    FieldKind.BOOLEAN: _score_boolean,
    FieldKind.NUMBER: _score_number,
}


def earned_weight(definition: FieldDefinition, value: Any) -> int:
    """
    Weight a single value earns against its definition.

    Absent values (None) earn nothing. A value of the wrong kind is a
    SchemaMismatch and also earns nothing.
    """
    if value is None:
        return 0
    try:
        return _SCORERS[definition.kind](definition, value)
    except SchemaMismatch as e:
        logger.debug(f"Treating field as unsatisfied: {e}")
        return 0


def _message_for(definition: FieldDefinition, current: int) -> str:
    if definition.is_counted:
        remaining = definition.required_weight - current
        noun = definition.display_name.lower()
        if remaining == 1 and noun.endswith("s"):
            noun = noun[:-1]
        return f"Add {remaining} more {noun} ({current} of {definition.required_weight})"
    return f"Add your {definition.display_name.lower()}"


def score(
    document: Mapping[str, Any] | None,
    catalog: FieldCatalog = DEFAULT_CATALOG,
    *,
    computed_at: datetime | None = None,
) -> CompletionSnapshot:
    """
    Score a profile document against the catalog.

    Args:
        document: Raw profile document (field name -> untyped value).
                  None is treated as an empty document.
        catalog: Field schema to score against.
        computed_at: Timestamp for the snapshot (defaults to now, UTC).

    Returns:
        CompletionSnapshot with ratio in [0, 1] and incomplete fields in
        catalog order.

    Example:
        snapshot = score({"name": "Ana", "profilePictures": ["a", "b"]})
        snapshot.missing_fields()[0]  # "bio"
        photos = next(r for r in snapshot.incomplete_fields if r.field == "profilePictures")
        photos.message  # "Add 4 more photos (2 of 6)"
    """
    document = document or {}
    earned_total = 0
    incomplete: list[IncompleteFieldReport] = []

    for definition in catalog:
        earned = earned_weight(definition, document.get(definition.name))
        earned_total += earned
        if earned < definition.required_weight:
            incomplete.append(
                IncompleteFieldReport(
                    field=definition.name,
                    display_name=definition.display_name,
                    message=_message_for(definition, earned),
                    required_weight=definition.required_weight,
                    current_weight=earned,
                )
            )

    ratio = earned_total / catalog.total_required_weight()
    return CompletionSnapshot(
        ratio=ratio,
        incomplete_fields=tuple(incomplete),
        computed_at=computed_at or _utc_now(),
    )
