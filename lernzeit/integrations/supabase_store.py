"""
Supabase (PostgREST) backed stores.

Implements the template, profile and quality-metrics store contracts
against the Supabase REST endpoint of the learning app.

Usage:
    async with SupabaseStore(settings.supabase_url, settings.supabase_key) as store:
        templates = await store.fetch_templates(SelectionCriteria(grade=3))

Tables:
    templates                 exercise templates (status ACTIVE / ARCHIVED)
    template_usage            one row per template served (freshness)
    user_difficulty_profiles  per (user, category, grade) difficulty profile
    question_quality_metrics  quality reports of generated questions
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import httpx
from loguru import logger

from lernzeit.core.models import (
    DifficultyProfile,
    SelectionCriteria,
    Template,
    TemplateStatus,
    normalize_difficulty,
    normalize_question_type,
    utcnow,
)
from lernzeit.core.stores import StoreError, parse_profile, parse_templates

TEMPLATES_TABLE = "templates"
USAGE_TABLE = "template_usage"
PROFILES_TABLE = "user_difficulty_profiles"
QUALITY_METRICS_TABLE = "question_quality_metrics"

PROFILE_CONFLICT_COLUMNS = "user_id,category,grade"
QUALITY_CONFLICT_COLUMNS = "question_id,user_id"


def in_filter(values: list[Any]) -> str:
    """PostgREST ``in`` filter with every value quoted."""
    quoted = ",".join('"' + str(v).replace('"', '\\"') + '"' for v in values)
    return f"in.({quoted})"


class SupabaseStore:
    """
    HTTP store over the Supabase PostgREST API.

    Every transport failure, non-2xx response or undecodable body is raised
    as StoreError; the engine components decide how to degrade.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "SupabaseStore":
        await self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "apikey": self.api_key,
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            }
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[list[tuple[str, str]]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        client = await self._ensure_client()
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await client.request(method, f"/{table}", params=params, json=json, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreError(
                f"{method} {table} failed with {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {table} request error: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise StoreError(f"{method} {table} returned invalid JSON") from e

    # =========================================================================
    # Templates
    # =========================================================================

    async def fetch_templates(self, criteria: SelectionCriteria) -> list[Template]:
        params = [
            ("select", "*"),
            ("grade", f"eq.{criteria.grade}"),
            ("status", f"eq.{TemplateStatus.ACTIVE.value}"),
        ]
        if criteria.domain:
            params.append(("domain", f"eq.{criteria.domain}"))
        if criteria.quarter:
            params.append(("quarter_app", f"eq.{criteria.quarter}"))
        if criteria.question_type:
            params.append(("question_type", f"eq.{normalize_question_type(criteria.question_type)}"))
        if criteria.min_quality is not None:
            params.append(("quality_score", f"gte.{criteria.min_quality}"))
        params.append(("order", "quality_score.desc.nullslast"))

        rows = await self._request("GET", TEMPLATES_TABLE, params=params) or []
        templates = parse_templates(rows)

        # Difficulty is stored in several spellings (AFB tiers, German labels)
        if criteria.difficulty:
            wanted = normalize_difficulty(criteria.difficulty)
            templates = [t for t in templates if t.difficulty == wanted]

        logger.debug(f"Fetched {len(templates)} templates for grade {criteria.grade}, {criteria.domain}")
        return templates

    async def fetch_grade_templates(self, grade: int) -> list[Template]:
        rows = await self._request(
            "GET",
            TEMPLATES_TABLE,
            params=[("select", "*"), ("grade", f"eq.{grade}")],
        ) or []
        return parse_templates(rows)

    async def archive_templates(self, template_ids: list[str]) -> int:
        if not template_ids:
            return 0
        rows = await self._request(
            "PATCH",
            TEMPLATES_TABLE,
            params=[("id", in_filter(template_ids))],
            json={"status": TemplateStatus.ARCHIVED.value},
            prefer="return=representation",
        ) or []
        return len(rows)

    async def recent_usage(self, template_ids: list[str], since: datetime) -> dict[str, int]:
        if not template_ids:
            return {}
        rows = await self._request(
            "GET",
            USAGE_TABLE,
            params=[
                ("select", "template_id"),
                ("template_id", in_filter(template_ids)),
                ("used_at", f"gte.{since.isoformat()}"),
            ],
        ) or []

        counts: dict[str, int] = {}
        for row in rows:
            template_id = str(row.get("template_id"))
            counts[template_id] = counts.get(template_id, 0) + 1
        return counts

    async def record_usage(self, template_id: str, user_id: str, session_id: Optional[str]) -> None:
        await self._request(
            "POST",
            USAGE_TABLE,
            json={
                "template_id": template_id,
                "user_id": user_id,
                "session_id": session_id,
                "used_at": utcnow().isoformat(),
            },
            prefer="return=minimal",
        )

    # =========================================================================
    # Difficulty profiles
    # =========================================================================

    async def get_profile(self, user_id: str, category: str, grade: int) -> Optional[DifficultyProfile]:
        rows = await self._request(
            "GET",
            PROFILES_TABLE,
            params=[
                ("select", "*"),
                ("user_id", f"eq.{user_id}"),
                ("category", f"eq.{category}"),
                ("grade", f"eq.{grade}"),
                ("limit", "1"),
            ],
        ) or []
        return parse_profile(rows[0] if rows else None)

    async def upsert_profile(self, profile: DifficultyProfile) -> None:
        await self._request(
            "POST",
            PROFILES_TABLE,
            params=[("on_conflict", PROFILE_CONFLICT_COLUMNS)],
            json=profile.to_record(),
            prefer="resolution=merge-duplicates,return=minimal",
        )

    # =========================================================================
    # Quality metrics
    # =========================================================================

    async def store_quality_report(self, record: dict[str, Any]) -> None:
        await self._request(
            "POST",
            QUALITY_METRICS_TABLE,
            params=[("on_conflict", QUALITY_CONFLICT_COLUMNS)],
            json=record,
            prefer="resolution=merge-duplicates,return=minimal",
        )
