"""Pytest configuration and record factories for casemerge tests."""

import pytest

from casemerge.records.models import Record
from casemerge.records.normalizer import normalize

LOGIN_STEPS = [
    {"description": "Open the login page", "testData": "", "expectedResult": "Login form is shown"},
    {"description": "Enter valid username and password", "testData": "alice / s3cret", "expectedResult": ""},
    {"description": "Click the sign in button", "testData": "", "expectedResult": "Dashboard is shown"},
]

RESET_STEPS = [
    {"description": "Open the forgot password link", "expectedResult": "Reset form is shown"},
    {"description": "Submit the registered email address", "expectedResult": "Reset email is sent"},
]


def make_record(**overrides) -> Record:
    """Build a normalized login test case, overriding any raw field."""
    raw = {
        "id": "tc-login",
        "title": "Login with valid credentials",
        "category": "Authentication",
        "priority": "High",
        "steps": LOGIN_STEPS,
    }
    raw.update(overrides)
    return normalize(raw)


def make_reset(**overrides) -> Record:
    raw = {
        "id": "tc-reset",
        "title": "Reset password via email",
        "category": "Account",
        "priority": "Medium",
        "steps": RESET_STEPS,
    }
    raw.update(overrides)
    return normalize(raw)


def make_unrelated(record_id: str, title: str) -> Record:
    return normalize({
        "id": record_id,
        "title": title,
        "category": "Reporting",
        "steps": [{"description": f"Export the {title.lower()} report as PDF"}],
        "tags": ["export"],
    })


@pytest.fixture
def login() -> Record:
    return make_record()


@pytest.fixture
def reset() -> Record:
    return make_reset()
