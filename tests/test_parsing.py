"""Tests for loading JSON documents and GEDCOM files."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from stemma.errors import DataFormatError
from stemma.models import FamilyData
from stemma.parsing import load_family_data, load_json, parse_date_string, xref_to_id

GEDCOM = """\
0 HEAD
1 GEDC
2 VERS 5.5.1
2 FORM LINEAGE-LINKED
1 CHAR UTF-8
0 @I1@ INDI
1 NAME John /Smith/
1 SEX M
1 BIRT
2 DATE 25 NOV 1954
2 PLAC Boston
0 @I2@ INDI
1 NAME Mary /Jones/
1 SEX F
0 @I3@ INDI
1 NAME Ann /Smith/
1 SEX F
1 BIRT
2 DATE ABT 1980
0 @I4@ INDI
1 NAME Lone /Parent/
1 SEX F
0 @I5@ INDI
1 NAME Kid /Parent/
0 @F1@ FAM
1 HUSB @I1@
1 WIFE @I2@
1 CHIL @I3@
1 MARR
2 DATE 1978
1 DIV Y
0 @F2@ FAM
1 WIFE @I4@
1 CHIL @I5@
0 TRLR
"""


def _family_doc() -> dict:
    return {
        "version": 3,
        "persons": {
            "p1": {"id": "p1", "firstName": "Ada", "gender": "female", "partnerships": ["u1"]},
            "p2": {"id": "p2", "firstName": "Bob", "gender": "male", "partnerships": ["u1"]},
            "c1": {"id": "c1", "firstName": "Cy", "gender": "other", "parentIds": ["p1", "p2"]},
        },
        "partnerships": {
            "u1": {"id": "u1", "person1Id": "p1", "person2Id": "p2", "childIds": ["c1"]},
        },
    }


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("25 NOV 1954", "1954-11-25"),
        ("NOV 1954", "1954-11-01"),
        ("May, 1837", "1837-05-01"),
        ("1698", "1698-01-01"),
        ("ABT 1905", "1905-01-01"),
        ("(1789?)", "1789-01-01"),
        ("1839-08-29", "1839-08-29"),
        ("1839-00-00", "1839-01-01"),
        ("01-27-1920", "1920-01-27"),
        ("1/15/1957", "1957-01-15"),
        ("April 17, 1850", "1850-04-17"),
        ("Oct.12,1929", "1929-10-12"),
    ],
)
def test_parse_date_string(raw: str, expected: str) -> None:
    assert parse_date_string(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "unknown", "13/45/1900", "Smarch 1900"])
def test_parse_date_string_rejects(raw) -> None:
    assert parse_date_string(raw) is None


def test_xref_to_id() -> None:
    assert xref_to_id("@I12@") == "I12"


class TestJson:
    def test_load_json(self, tmp_path: Path) -> None:
        path = tmp_path / "family.json"
        path.write_text(json.dumps(_family_doc()), encoding="utf-8")
        data = load_json(path)
        assert data.version == 3
        assert set(data.persons) == {"p1", "p2", "c1"}
        assert data.persons["c1"].gender is None
        assert data.partnerships["u1"].status == "married"
        assert data.is_claimed_child("c1")

    def test_round_trip_through_dict(self) -> None:
        data = FamilyData.from_dict(_family_doc())
        assert FamilyData.from_dict(data.to_dict()) == data

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(DataFormatError):
            load_json(path)

    def test_partnership_without_partner(self) -> None:
        doc = _family_doc()
        del doc["partnerships"]["u1"]["person2Id"]
        with pytest.raises(DataFormatError, match="person2Id"):
            FamilyData.from_dict(doc)

    def test_persons_must_be_keyed(self) -> None:
        with pytest.raises(DataFormatError):
            FamilyData.from_dict({"persons": [], "partnerships": {}})


class TestGedcom:
    @pytest.fixture
    def gedcom_file(self, tmp_path: Path) -> Path:
        path = tmp_path / "tree.ged"
        path.write_text(GEDCOM, encoding="utf-8")
        return path

    def test_persons(self, gedcom_file: Path) -> None:
        data = load_family_data(gedcom_file)
        john = data.persons["I1"]
        assert (john.first_name, john.last_name) == ("John", "Smith")
        assert john.gender == "male"
        assert john.birth_date == "1954-11-25"
        assert john.birth_place == "Boston"
        assert data.persons["I3"].birth_date.startswith("1980")
        assert data.persons["I5"].gender is None

    def test_families(self, gedcom_file: Path) -> None:
        data = load_family_data(gedcom_file)
        fam = data.partnerships["F1"]
        assert (fam.person1_id, fam.person2_id) == ("I1", "I2")
        assert fam.child_ids == ["I3"]
        assert fam.status == "divorced"
        assert fam.start_date == "1978-01-01"
        assert data.persons["I1"].partnerships == ["F1"]
        assert data.persons["I3"].parent_ids == ["I1", "I2"]

    def test_single_parent_family_only_links(self, gedcom_file: Path) -> None:
        data = load_family_data(gedcom_file)
        assert "F2" not in data.partnerships
        assert data.persons["I5"].parent_ids == ["I4"]
        assert data.persons["I4"].child_ids == ["I5"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises((DataFormatError, OSError)):
            load_family_data(tmp_path / "missing.ged")
