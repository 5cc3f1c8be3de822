"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from lernzeit.core.models import Question, Template  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (require Supabase)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


class FakeClock:
    """Controllable UTC clock for session expiry and freshness windows."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_template(template_id: str, **overrides) -> Template:
    values = {
        "id": template_id,
        "grade": 3,
        "domain": "Zahlen & Operationen",
        "quarter_app": "Q1",
        "difficulty": "medium",
        "question_type": "FREETEXT",
        "quality_score": 0.8,
        "plays": 0,
        "correct": 0,
        "status": "ACTIVE",
        "student_prompt": f"Aufgabe {template_id}",
    }
    values.update(overrides)
    return Template.model_validate(values)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def clock():
    """Clock frozen at a fixed instant; advance() to move time."""
    return FakeClock(datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def rng():
    """Seeded random source."""
    return random.Random(42)


@pytest.fixture
def template_factory():
    """Build a valid grade-3 template, overriding any field."""
    return make_template


@pytest.fixture
def sample_templates():
    """Small grade-3 pool with mixed question types and difficulties."""
    return [
        make_template("t-1", quality_score=0.9, question_type="MULTIPLE_CHOICE"),
        make_template("t-2", quality_score=0.8, question_type="FREETEXT", difficulty="easy"),
        make_template("t-3", quality_score=0.75, question_type="SORT", difficulty="hard"),
        make_template("t-4", quality_score=0.7, question_type="MATCH"),
        make_template("t-5", quality_score=0.65, question_type="FREETEXT"),
    ]


@pytest.fixture
def sample_question():
    """A well-formed grade-3 math question."""
    return Question(
        id="q-1",
        question="Emma kauft 3 Äpfel für je 2 Euro. Wie viel Geld bezahlt sie?",
        question_type="multiple-choice",
        answer="6 Euro",
        explanation="3 mal 2 Euro ergibt 6 Euro.",
        options=["5 Euro", "6 Euro", "8 Euro", "9 Euro"],
    )


@pytest.fixture
def clean_question():
    """Grade-5 question that clears every quality threshold."""
    return Question(
        id="q-clean",
        question="Lina kauft 4 Hefte für 3 Euro. Wie viel?",
        question_type="multiple-choice",
        answer="12 Euro",
        explanation="4 Hefte mal 3 Euro sind 12 Euro.",
        options=["7 Euro", "12 Euro", "15 Euro"],
    )


@pytest.fixture
def bare_question():
    """Context-free arithmetic prompt without explanation."""
    return Question(id="q-bare", question="3 + 4", answer="7")
