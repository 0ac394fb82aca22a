"""Shared fixtures for the sync service tests."""

import json
import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


def create_sample_document():
    """Small timetable document covering every export rule."""
    return {
        "Days": [
            {"DayID": 1, "Name": "Monday"},
            {"DayID": 2, "Name": "Tuesday"}
        ],
        "Periods": [
            {"PeriodID": 10, "DayID": 1, "Code": "1"},
            {"PeriodID": 11, "DayID": 2, "Code": "2"}
        ],
        "ClassNames": [
            {"ClassNameID": 100, "Code": "7ENG1"},
            {"ClassNameID": 101, "Code": "SPORT", "TeacherNotRequired": True}
        ],
        "RollClasses": [{"RollClassID": 5, "YearLevelID": 7}],
        "YearLevels": [{"YearLevelID": 7, "Code": "7"}],
        "Teachers": [{"TeacherID": 20, "Code": "ABC"}],
        "Rooms": [{"RoomID": 30, "Code": "R1"}],
        "Timetable": [
            {"PeriodID": 10, "ClassNameID": 100, "RollClassID": 5, "TeacherID": 20, "RoomID": 30},
            {"PeriodID": 11, "ClassNameID": 101, "TeacherID": 20, "RoomID": 30},
            {"PeriodID": 99, "ClassNameID": 100}
        ],
        "Students": [
            {
                "LastName": "Smith",
                "FirstName": "Jo",
                "YearLevel": 7,
                "Code": "S1",
                "House": "Red",
                "HomeGroup": "7A",
                "StudentLessons": [
                    {"ClassCode": "7MAT1"},
                    {"ClassCode": "7ENG1"},
                    {"ClassCode": "7ENG1"}
                ]
            },
            {
                "LastName": "Lee",
                "FirstName": "Sam",
                "YearLevel": "12",
                "Code": "S2",
                "StudentLessons": [{"ClassCode": "12PHY"}, {"ClassCode": " "}]
            },
            {"LastName": "Nobody", "FirstName": "X", "YearLevel": 8, "StudentLessons": []}
        ]
    }


@pytest.fixture
def sample_tfx(tmp_path):
    """Timetable document written to a temporary directory."""
    path = tmp_path / "Timetable.tfx"
    path.write_text(json.dumps(create_sample_document()), encoding="utf-8")
    return path
