"""Canonical issue categories and their owning departments."""

# Valid categories, as produced by the risk classifier
ALL_CATEGORIES = (
    "Pothole",
    "Garbage Dump",
    "Water Leakage",
    "Broken Road",
    "Fallen Tree",
    "Street Light Issue",
    "Drainage Blockage",
    "Construction Hazard",
    "Other",
)

FALLBACK_CATEGORY = "Other"

CATEGORY_DEPARTMENTS = {
    "Pothole": "Roads",
    "Broken Road": "Roads",
    "Construction Hazard": "Roads",
    "Water Leakage": "Water",
    "Drainage Blockage": "Water",
    "Street Light Issue": "Electricity",
    "Garbage Dump": "Sanitation",
    "Fallen Tree": "Sanitation",
    "Other": "General",
}

_BY_KEY = {c.replace(" ", "").lower(): c for c in ALL_CATEGORIES}


def normalize_category(raw: str | None) -> str:
    """Return the canonical spelling of a category, or Other if unknown."""
    if not raw:
        return FALLBACK_CATEGORY
    key = "".join(raw.split()).replace("_", "").replace("-", "").lower()
    return _BY_KEY.get(key, FALLBACK_CATEGORY)


def department_for(category: str) -> str:
    """Department that normally handles a category."""
    return CATEGORY_DEPARTMENTS.get(normalize_category(category), "General")
