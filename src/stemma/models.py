"""Data classes for family tree entities."""

from dataclasses import dataclass, field
from typing import Any

from stemma.errors import DataFormatError

GENDERS = ("male", "female")
PARTNERSHIP_STATUSES = ("married", "partners", "divorced", "separated")
TERMINATED_STATUSES = ("divorced", "separated")


@dataclass
class Person:
    id: str
    first_name: str = ""
    last_name: str = ""
    gender: str | None = None  # "male", "female" or None when unknown
    is_placeholder: bool = False
    partnerships: list[str] = field(default_factory=list)
    parent_ids: list[str] = field(default_factory=list)
    child_ids: list[str] = field(default_factory=list)
    birth_date: str | None = None  # ISO format YYYY-MM-DD (or a prefix of it)
    birth_place: str | None = None
    death_date: str | None = None
    death_place: str | None = None

    @property
    def name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or self.id

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "Person":
        """Build a person from the host's camelCase JSON record."""
        try:
            person_id = doc["id"]
        except KeyError as exc:
            raise DataFormatError(f"Person record without id: {doc!r}") from exc

        gender = doc.get("gender")
        if gender not in GENDERS:
            gender = None

        return cls(
            id=person_id,
            first_name=doc.get("firstName", ""),
            last_name=doc.get("lastName", ""),
            gender=gender,
            is_placeholder=bool(doc.get("isPlaceholder", False)),
            partnerships=list(doc.get("partnerships", [])),
            parent_ids=list(doc.get("parentIds", [])),
            child_ids=list(doc.get("childIds", [])),
            birth_date=doc.get("birthDate"),
            birth_place=doc.get("birthPlace"),
            death_date=doc.get("deathDate"),
            death_place=doc.get("deathPlace"),
        )

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "gender": self.gender,
            "isPlaceholder": self.is_placeholder,
            "partnerships": list(self.partnerships),
            "parentIds": list(self.parent_ids),
            "childIds": list(self.child_ids),
        }
        for key, value in (
            ("birthDate", self.birth_date),
            ("birthPlace", self.birth_place),
            ("deathDate", self.death_date),
            ("deathPlace", self.death_place),
        ):
            if value is not None:
                doc[key] = value
        return doc


@dataclass
class Partnership:
    id: str
    person1_id: str
    person2_id: str
    child_ids: list[str] = field(default_factory=list)
    status: str = "married"  # married, partners, divorced, separated
    start_date: str | None = None
    start_place: str | None = None
    end_date: str | None = None
    note: str | None = None
    is_primary: bool = False

    @property
    def is_terminated(self) -> bool:
        return self.status in TERMINATED_STATUSES

    def involves(self, person_id: str) -> bool:
        return person_id in (self.person1_id, self.person2_id)

    def partner_of(self, person_id: str) -> str:
        return self.person2_id if self.person1_id == person_id else self.person1_id

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "Partnership":
        try:
            return cls(
                id=doc["id"],
                person1_id=doc["person1Id"],
                person2_id=doc["person2Id"],
                child_ids=list(doc.get("childIds", [])),
                status=doc.get("status") or "married",
                start_date=doc.get("startDate"),
                start_place=doc.get("startPlace"),
                end_date=doc.get("endDate"),
                note=doc.get("note"),
                is_primary=bool(doc.get("isPrimary", False)),
            )
        except KeyError as exc:
            raise DataFormatError(f"Partnership record missing {exc.args[0]}: {doc!r}") from exc

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "person1Id": self.person1_id,
            "person2Id": self.person2_id,
            "childIds": list(self.child_ids),
            "status": self.status,
        }
        for key, value in (
            ("startDate", self.start_date),
            ("startPlace", self.start_place),
            ("endDate", self.end_date),
            ("note", self.note),
        ):
            if value is not None:
                doc[key] = value
        if self.is_primary:
            doc["isPrimary"] = True
        return doc


@dataclass
class FamilyData:
    persons: dict[str, Person] = field(default_factory=dict)
    partnerships: dict[str, Partnership] = field(default_factory=dict)
    version: int | None = None

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "FamilyData":
        """Read a `{version, persons, partnerships}` document keyed by ID."""
        if not isinstance(doc, dict):
            raise DataFormatError("Family document must be a JSON object")

        persons_doc = doc.get("persons", {})
        partnerships_doc = doc.get("partnerships", {})
        if not isinstance(persons_doc, dict) or not isinstance(partnerships_doc, dict):
            raise DataFormatError("'persons' and 'partnerships' must be objects keyed by ID")

        persons = {key: Person.from_dict(value) for key, value in persons_doc.items()}
        partnerships = {key: Partnership.from_dict(value) for key, value in partnerships_doc.items()}
        return cls(persons=persons, partnerships=partnerships, version=doc.get("version"))

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "persons": {pid: p.to_dict() for pid, p in self.persons.items()},
            "partnerships": {pid: p.to_dict() for pid, p in self.partnerships.items()},
        }
        if self.version is not None:
            doc["version"] = self.version
        return doc

    def is_claimed_child(self, person_id: str) -> bool:
        """True when some partnership lists the person among its children."""
        return any(person_id in p.child_ids for p in self.partnerships.values())
