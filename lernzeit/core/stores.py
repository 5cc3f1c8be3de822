"""
Store contracts consumed by the engine, plus in-memory implementations.

The engine never owns persistence. It talks to three collaborators:

- TemplateStore: active templates, archival, population-wide usage events
- ProfileStore: difficulty profiles keyed by (user, category, grade)
- QualityMetricsStore: optional sink for quality reports

Any failure inside a store surfaces as StoreError. Components catch it at
their boundary and degrade to None/empty/default values.

The in-memory stores back the tests and offline use.
"""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from lernzeit.core.models import (
    DifficultyProfile,
    SelectionCriteria,
    Template,
    TemplateStatus,
    utcnow,
)


class StoreError(Exception):
    """External store unreachable or returned malformed data."""


def parse_templates(rows: Iterable[dict[str, Any]]) -> list[Template]:
    """Validate raw store rows, skipping (and logging) malformed ones."""
    templates = []
    for row in rows:
        try:
            templates.append(Template.model_validate(row))
        except ValidationError as e:
            logger.warning(f"Skipping malformed template row {row.get('id', '?')}: {e.error_count()} errors")
    return templates


def parse_profile(row: Optional[dict[str, Any]]) -> Optional[DifficultyProfile]:
    if not row:
        return None
    try:
        return DifficultyProfile.model_validate(row)
    except ValidationError as e:
        raise StoreError(f"Malformed difficulty profile: {e}") from e


class TemplateStore(Protocol):
    async def fetch_templates(self, criteria: SelectionCriteria) -> list[Template]: ...

    async def fetch_grade_templates(self, grade: int) -> list[Template]: ...

    async def archive_templates(self, template_ids: list[str]) -> int: ...

    async def recent_usage(self, template_ids: list[str], since: datetime) -> dict[str, int]: ...

    async def record_usage(self, template_id: str, user_id: str, session_id: Optional[str]) -> None: ...


class ProfileStore(Protocol):
    async def get_profile(self, user_id: str, category: str, grade: int) -> Optional[DifficultyProfile]: ...

    async def upsert_profile(self, profile: DifficultyProfile) -> None: ...


class QualityMetricsStore(Protocol):
    async def store_quality_report(self, record: dict[str, Any]) -> None: ...


# =============================================================================
# In-memory implementations
# =============================================================================

class InMemoryTemplateStore:
    """Template store held in process memory."""

    def __init__(
        self,
        templates: Optional[Iterable[Template]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.templates: dict[str, Template] = {t.id: t for t in (templates or [])}
        self.usage_events: list[tuple[str, str, Optional[str], datetime]] = []
        self._clock = clock

    def add(self, template: Template) -> None:
        self.templates[template.id] = template

    async def fetch_templates(self, criteria: SelectionCriteria) -> list[Template]:
        min_quality = criteria.min_quality or 0.0
        return [
            t for t in self.templates.values()
            if t.is_active
            and criteria.matches(t)
            and (t.quality_score or 0.0) >= min_quality
        ]

    async def fetch_grade_templates(self, grade: int) -> list[Template]:
        return [t for t in self.templates.values() if t.grade == grade]

    async def archive_templates(self, template_ids: list[str]) -> int:
        archived = 0
        for template_id in template_ids:
            template = self.templates.get(template_id)
            if template is not None and template.is_active:
                self.templates[template_id] = template.model_copy(
                    update={"status": TemplateStatus.ARCHIVED.value}
                )
                archived += 1
        return archived

    async def recent_usage(self, template_ids: list[str], since: datetime) -> dict[str, int]:
        wanted = set(template_ids)
        counts: dict[str, int] = {}
        for template_id, _user, _session, used_at in self.usage_events:
            if template_id in wanted and used_at >= since:
                counts[template_id] = counts.get(template_id, 0) + 1
        return counts

    async def record_usage(self, template_id: str, user_id: str, session_id: Optional[str]) -> None:
        self.usage_events.append((template_id, user_id, session_id, self._clock()))


class InMemoryProfileStore:
    """Difficulty profiles keyed by (user, category, grade)."""

    def __init__(self) -> None:
        self.profiles: dict[tuple[str, str, int], DifficultyProfile] = {}
        self.writes = 0

    async def get_profile(self, user_id: str, category: str, grade: int) -> Optional[DifficultyProfile]:
        profile = self.profiles.get((user_id, category, grade))
        return profile.model_copy(deep=True) if profile else None

    async def upsert_profile(self, profile: DifficultyProfile) -> None:
        self.profiles[profile.key] = profile.model_copy(deep=True)
        self.writes += 1


class InMemoryQualityMetricsStore:
    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []

    async def store_quality_report(self, record: dict[str, Any]) -> None:
        self.records.append(record)
