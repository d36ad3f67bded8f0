"""Loading family data from host JSON documents and GEDCOM files."""

import json
import logging
import re
from pathlib import Path

from ged4py import GedcomReader

from stemma.errors import DataFormatError
from stemma.models import FamilyData, Partnership, Person

logger = logging.getLogger(__name__)


# Month name mappings (handle abbreviations and full names)
MONTH_MAP = {
    "JAN": 1,
    "JANUARY": 1,
    "FEB": 2,
    "FEBRUARY": 2,
    "MAR": 3,
    "MARCH": 3,
    "APR": 4,
    "APRIL": 4,
    "MAY": 5,
    "JUN": 6,
    "JUNE": 6,
    "JUL": 7,
    "JULY": 7,
    "AUG": 8,
    "AUGUST": 8,
    "SEP": 9,
    "SEPT": 9,
    "SEPTEMBER": 9,
    "OCT": 10,
    "OCTOBER": 10,
    "NOV": 11,
    "NOVEMBER": 11,
    "DEC": 12,
    "DECEMBER": 12,
}

SEX_TO_GENDER = {"M": "male", "F": "female"}

_QUALIFIERS = re.compile(
    r"^(ABT\.?|ABOUT|BEF\.?|BEFORE|AFT\.?|AFTER|EST\.?|CAL\.?|CIRCA|CA\.?|AROUND):?\s*",
    flags=re.IGNORECASE,
)


def _iso(year: int, month: int = 1, day: int = 1) -> str | None:
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    return f"{year:04d}-{month:02d}-{day:02d}"


def parse_date_string(date_str: str | None) -> str | None:
    """
    Parse a GEDCOM date string into ISO format (YYYY-MM-DD).
    Returns None if the date cannot be parsed.

    Handles formats like:
    - "25 NOV 1954"
    - "NOV 1954" or "May, 1837"
    - "1698", "ABT 1905", "(1789?)"
    - "1839-08-29"
    - "01-27-1920" or "1/15/1957" (month first)
    - "April 17, 1850" or "Oct.12,1929"
    """
    if not date_str:
        return None

    s = date_str.strip().strip("()").rstrip("?")
    s = _QUALIFIERS.sub("", s).strip()
    if not s:
        return None

    match = re.match(r"^(\d{4})-(\d{2})-(\d{2})$", s)
    if match:
        year, month, day = (int(g) for g in match.groups())
        # 00 month/day means unknown
        return _iso(year, month or 1, day or 1)

    match = re.match(r"^(\d{1,2})\s+([A-Za-z]+)\.?\s*(\d{4})$", s)
    if match:
        month = MONTH_MAP.get(match.group(2).upper())
        if month:
            return _iso(int(match.group(3)), month, int(match.group(1)))

    match = re.match(r"^([A-Za-z]+)\.?,?\s*(\d{4})$", s)
    if match:
        month = MONTH_MAP.get(match.group(1).upper())
        if month:
            return _iso(int(match.group(2)), month)

    match = re.match(r"^(\d{4})$", s)
    if match:
        return _iso(int(match.group(1)))

    match = re.match(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$", s)
    if match:
        return _iso(int(match.group(3)), int(match.group(1)), int(match.group(2)))

    match = re.match(r"^([A-Za-z]+)\.?\s*(\d{1,2}),?\s*(\d{4})$", s)
    if match:
        month = MONTH_MAP.get(match.group(1).upper())
        if month:
            return _iso(int(match.group(3)), month, int(match.group(2)))

    return None


def load_json(path: Path) -> FamilyData:
    """Read a `{version, persons, partnerships}` JSON document."""
    try:
        with open(path, encoding="utf-8") as f:
            doc = json.load(f)
    except json.JSONDecodeError as exc:
        raise DataFormatError(f"{path} is not valid JSON: {exc}") from exc
    return FamilyData.from_dict(doc)


# ============================================================================
# GEDCOM
# ============================================================================


def xref_to_id(xref_id: str) -> str:
    """'@I12@' -> 'I12'"""
    return xref_id.strip("@")


def extract_name_parts(indi) -> tuple[str, str]:
    """Extract (first name, last name) from an individual record."""
    name_rec = indi.sub_tag("NAME")
    if name_rec is None or name_rec.value is None:
        return ("", "")

    # ged4py returns NAME as tuple: (given, surname, suffix)
    name_value = name_rec.value
    if isinstance(name_value, tuple):
        given, surname, suffix = name_value
        last = " ".join(p for p in (surname, suffix) if p)
        return (given or "", last)

    parts = str(name_value).split("/")
    given = parts[0].strip()
    surname = parts[1].strip() if len(parts) > 1 else ""
    return (given, surname)


def extract_event_details(rec, tag: str) -> tuple[str | None, str | None]:
    """Extract (ISO date, place) from an event tag (BIRT, DEAT, MARR...)."""
    event = rec.sub_tag(tag)
    if event is None:
        return (None, None)

    date_rec = event.sub_tag("DATE")
    place_rec = event.sub_tag("PLAC")

    # ged4py may return DateValue objects
    date_val = parse_date_string(str(date_rec.value)) if date_rec and date_rec.value else None
    place_val = str(place_rec.value) if place_rec and place_rec.value else None
    return (date_val, place_val)


def _read_persons(reader: GedcomReader) -> dict[str, Person]:
    persons: dict[str, Person] = {}
    for rec in reader.records0("INDI"):
        if rec.xref_id is None:
            continue

        person_id = xref_to_id(rec.xref_id)
        first_name, last_name = extract_name_parts(rec)
        sex_rec = rec.sub_tag("SEX")
        birth_date, birth_place = extract_event_details(rec, "BIRT")
        death_date, death_place = extract_event_details(rec, "DEAT")

        persons[person_id] = Person(
            id=person_id,
            first_name=first_name,
            last_name=last_name,
            gender=SEX_TO_GENDER.get(sex_rec.value) if sex_rec else None,
            birth_date=birth_date,
            birth_place=birth_place,
            death_date=death_date,
            death_place=death_place,
        )
    return persons


def normalize_gedcom(reader: GedcomReader) -> FamilyData:
    """
    Turn GEDCOM INDI and FAM records into family data.

    Families with two spouses become partnerships (status "divorced" when
    the record has a DIV event). Single-parent families only contribute
    parent/child links. Non-standard tags are ignored.
    """
    persons = _read_persons(reader)
    partnerships: dict[str, Partnership] = {}

    for rec in reader.records0("FAM"):
        if rec.xref_id is None:
            continue

        husb = rec.sub_tag("HUSB")
        wife = rec.sub_tag("WIFE")
        parent_ids = [
            xref_to_id(tag.xref_id) for tag in (husb, wife) if tag is not None and tag.xref_id
        ]
        parent_ids = [p for p in parent_ids if p in persons]
        child_ids = [
            xref_to_id(child.xref_id)
            for child in rec.sub_tags("CHIL")
            if child.xref_id and xref_to_id(child.xref_id) in persons
        ]

        for child_id in child_ids:
            child = persons[child_id]
            for parent_id in parent_ids:
                if parent_id not in child.parent_ids:
                    child.parent_ids.append(parent_id)
                if child_id not in persons[parent_id].child_ids:
                    persons[parent_id].child_ids.append(child_id)

        if len(parent_ids) != 2:
            continue

        fam_id = xref_to_id(rec.xref_id)
        start_date, start_place = extract_event_details(rec, "MARR")
        end_date, _ = extract_event_details(rec, "DIV")
        partnerships[fam_id] = Partnership(
            id=fam_id,
            person1_id=parent_ids[0],
            person2_id=parent_ids[1],
            child_ids=child_ids,
            status="divorced" if rec.sub_tag("DIV") is not None else "married",
            start_date=start_date,
            start_place=start_place,
            end_date=end_date,
        )
        for parent_id in parent_ids:
            persons[parent_id].partnerships.append(fam_id)

    return FamilyData(persons=persons, partnerships=partnerships)


def load_gedcom(path: Path) -> FamilyData:
    """Parse a GEDCOM file into family data."""
    try:
        with GedcomReader(str(path)) as reader:
            data = normalize_gedcom(reader)
    except (OSError, ValueError) as exc:
        raise DataFormatError(f"Could not read GEDCOM file {path}: {exc}") from exc
    logger.debug(
        "Loaded %d persons and %d partnerships from %s",
        len(data.persons),
        len(data.partnerships),
        path,
    )
    return data


def load_family_data(path: Path) -> FamilyData:
    """Load a .ged/.gedcom file with ged4py, anything else as JSON."""
    path = Path(path)
    if path.suffix.lower() in (".ged", ".gedcom"):
        return load_gedcom(path)
    return load_json(path)
