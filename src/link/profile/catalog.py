"""
Profile Field Catalog.

Declarative schema of the profile fields that count toward completion.
Adding a field means adding one FieldDefinition here; the scoring
algorithm in completion.py never changes.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator


class FieldKind(str, Enum):
    """Value kinds a profile field can hold."""
    TEXT = "text"
    LIST = "list"
    GEOPOINT = "geopoint"
    BOOLEAN = "boolean"
    NUMBER = "number"


class ListPolicy(str, Enum):
    """How a list field earns credit."""
    COUNTED = "counted"  # min(len, required_weight)
    ANY = "any"          # full weight iff non-empty


def _humanize(name: str) -> str:
    """profilePictures -> Profile pictures"""
    words = re.sub(r"(?<!^)(?=[A-Z])", " ", name).lower()
    return words[:1].upper() + words[1:]


@dataclass(frozen=True)
class FieldDefinition:
    """One required profile field."""
    name: str
    kind: FieldKind
    required_weight: int = 1
    display_name: str = ""
    list_policy: ListPolicy | None = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Field name must not be empty")
        if self.required_weight <= 0:
            raise ValueError(f"Field {self.name!r} must have a positive required weight")
        if self.kind == FieldKind.LIST:
            if self.list_policy is None:
                object.__setattr__(self, "list_policy", ListPolicy.ANY)
        elif self.list_policy is not None:
            raise ValueError(f"Field {self.name!r} is {self.kind.value}, list_policy does not apply")
        if not self.display_name:
            object.__setattr__(self, "display_name", _humanize(self.name))

    @property
    def is_counted(self) -> bool:
        return self.list_policy == ListPolicy.COUNTED


class FieldCatalog:
    """
    Ordered, immutable set of FieldDefinitions.

    Names are unique and the catalog is never empty, so the total
    required weight is always positive.
    """

    def __init__(self, fields: Iterable[FieldDefinition]):
        self._fields = tuple(fields)
        if not self._fields:
            raise ValueError("FieldCatalog needs at least one field")

        self._by_name: dict[str, FieldDefinition] = {}
        for definition in self._fields:
            if definition.name in self._by_name:
                raise ValueError(f"Duplicate field in catalog: {definition.name}")
            self._by_name[definition.name] = definition

        self._total = sum(d.required_weight for d in self._fields)

    def all_fields(self) -> tuple[FieldDefinition, ...]:
        return self._fields

    def total_required_weight(self) -> int:
        return self._total

    def get(self, name: str) -> FieldDefinition | None:
        return self._by_name.get(name)

    def names(self) -> list[str]:
        return [d.name for d in self._fields]

    def extend(self, *fields: FieldDefinition) -> "FieldCatalog":
        """Return a new catalog with `fields` appended."""
        return FieldCatalog(self._fields + fields)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[FieldDefinition]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"FieldCatalog({len(self)} fields, weight={self._total})"


# =============================================================================
# Default Catalog
# =============================================================================

REQUIRED_PHOTO_COUNT = 6

_BASIC_FIELDS = [
    FieldDefinition("name", FieldKind.TEXT),
    FieldDefinition("bio", FieldKind.TEXT),
    FieldDefinition("location", FieldKind.GEOPOINT),
    FieldDefinition("occupation", FieldKind.TEXT),
    FieldDefinition(
        "profilePictures",
        FieldKind.LIST,
        required_weight=REQUIRED_PHOTO_COUNT,
        display_name="Photos",
        list_policy=ListPolicy.COUNTED,
    ),
]

# Appearance, lifestyle, diet and pets screens
_SETUP_FIELDS = [
    FieldDefinition("heightPreference", FieldKind.TEXT),
    FieldDefinition("bodyType", FieldKind.TEXT),
    FieldDefinition("preferredPartnerHeight", FieldKind.TEXT),
    FieldDefinition("activityLevel", FieldKind.TEXT),
    FieldDefinition("favoriteActivities", FieldKind.LIST),
    FieldDefinition("diet", FieldKind.TEXT),
    FieldDefinition("hasPets", FieldKind.TEXT),
    FieldDefinition("petTypes", FieldKind.LIST, display_name="Pet types"),
    FieldDefinition("animalPreference", FieldKind.TEXT),
]

# Signup flow pick-one screens
_ADDITIONAL_FIELDS = [
    FieldDefinition(name, FieldKind.TEXT)
    for name in (
        "gender", "sexuality", "datingIntention", "children",
        "familyPlans", "height", "sexualityPreference", "education",
        "religion", "ethnicity", "drinking", "smoking", "politics", "drugs",
    )
]

_PREFERENCE_FIELDS = [
    FieldDefinition("preferSimilarFitness", FieldKind.BOOLEAN, display_name="Fitness match preference"),
    FieldDefinition("dateDifferentDiet", FieldKind.BOOLEAN, display_name="Diet match preference"),
    FieldDefinition("dateWithPets", FieldKind.BOOLEAN, display_name="Pet match preference"),
    FieldDefinition("dietaryImportance", FieldKind.NUMBER, display_name="Diet importance"),
    FieldDefinition("heightImportance", FieldKind.NUMBER, display_name="Height importance"),
]

DEFAULT_CATALOG = FieldCatalog(
    _BASIC_FIELDS + _SETUP_FIELDS + _ADDITIONAL_FIELDS + _PREFERENCE_FIELDS
)
