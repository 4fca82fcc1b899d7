"""Tests for category normalisation and department routing."""

import pytest

from services.dispatch.src.dispatch.core.categories import (
    ALL_CATEGORIES,
    CATEGORY_DEPARTMENTS,
    department_for,
    normalize_category,
)


@pytest.mark.parametrize("raw,expected", [
    ("Pothole", "Pothole"),
    ("pothole", "Pothole"),
    ("garbage dump", "Garbage Dump"),
    ("Street_Light_Issue", "Street Light Issue"),
    ("water-leakage", "Water Leakage"),
    ("  Fallen   Tree ", "Fallen Tree"),
])
def test_normalize_variants(raw, expected):
    assert normalize_category(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "Alien Landing"])
def test_unknown_maps_to_other(raw):
    assert normalize_category(raw) == "Other"


def test_every_category_has_department():
    assert set(CATEGORY_DEPARTMENTS) == set(ALL_CATEGORIES)


def test_department_routing():
    assert department_for("Pothole") == "Roads"
    assert department_for("drainage blockage") == "Water"
    assert department_for("Street Light Issue") == "Electricity"
    assert department_for("Garbage Dump") == "Sanitation"
    assert department_for("whatever") == "General"
