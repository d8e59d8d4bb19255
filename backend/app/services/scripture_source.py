"""Source-text provider client and verse parsing.

The indexer depends only on :class:`ScriptureSource`; :class:`ScriptureApiClient`
implements it against the api.bible REST API.
"""

from __future__ import annotations

import re
from typing import Any, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..errors import ProviderError
from ..models import ParsedVerse, SourceBook, SourceChapter

# "[1] In the beginning ... [2] And the earth ..."
VERSE_PATTERN = re.compile(r"\[(\d+)\]\s*([^\[]+?)(?=\[\d+\]|$)")

CHAPTER_QUERY = {
    "content-type": "text",
    "include-notes": "false",
    "include-titles": "false",
    "include-chapter-numbers": "false",
    "include-verse-numbers": "true",
}


class ScriptureSource(Protocol):
    async def get_books(self, edition_id: str) -> list[SourceBook]: ...

    async def get_chapter(self, edition_id: str, chapter_id: str) -> SourceChapter: ...


class ScriptureApiClient:
    """Thin async client for ``/bibles/{id}/books`` and ``/bibles/{id}/chapters/{id}``."""

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://api.scripture.api.bible/v1",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._api_key = api_key
        self._transport = transport

    async def get_books(self, edition_id: str) -> list[SourceBook]:
        data = await self._get(f"/bibles/{edition_id}/books")
        if not isinstance(data, list):
            raise ProviderError("Unexpected books payload", provider="scripture")
        try:
            return [SourceBook.model_validate(item) for item in data]
        except PydanticValidationError as exc:
            raise ProviderError(f"Malformed books payload: {exc}", provider="scripture") from exc

    async def get_chapter(self, edition_id: str, chapter_id: str) -> SourceChapter:
        data = await self._get(f"/bibles/{edition_id}/chapters/{chapter_id}", params=CHAPTER_QUERY)
        if not isinstance(data, dict):
            raise ProviderError("Unexpected chapter payload", provider="scripture")
        try:
            return SourceChapter(
                id=str(data.get("id", chapter_id)), content=data.get("content") or ""
            )
        except PydanticValidationError as exc:
            raise ProviderError(
                f"Malformed chapter payload for {chapter_id}: {exc}", provider="scripture"
            ) from exc

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self.api_base}{path}",
                    params=params,
                    headers={"api-key": self._api_key},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"Scripture API {path} returned {exc.response.status_code}",
                provider="scripture",
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(
                f"Scripture API {path} failed: {exc}", provider="scripture"
            ) from exc

        if not isinstance(payload, dict) or "data" not in payload:
            raise ProviderError(
                f"Scripture API {path} response missing 'data'", provider="scripture"
            )
        return payload["data"]


def parse_verses(content: str) -> list[ParsedVerse]:
    """Split plain chapter text with ``[n]`` markers into verse units.

    Whitespace inside a verse is collapsed; markers with no text or a number
    below 1 are dropped.
    """
    verses: list[ParsedVerse] = []
    for match in VERSE_PATTERN.finditer(content or ""):
        text = " ".join(match.group(2).split())
        number = int(match.group(1))
        if text and number >= 1:
            verses.append(ParsedVerse(number=number, text=text))
    return verses


def resolve_source_book_id(books: list[SourceBook], code: str) -> str | None:
    """Edition-specific id of the book whose id starts with ``code``."""
    for book in books:
        if book.id.upper().startswith(code.upper()):
            return book.id
    return None
