"""Typed search pipeline stages.

A :class:`SearchPipeline` is an ordered list of tagged stages that the vector
repository compiles to SQL. Malformed combinations are rejected when the
pipeline is built, never at query time.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class VectorSearchStage(BaseModel):
    """Nearest-neighbour stage; score is ``1 - cosine distance``."""

    kind: Literal["vector_search"] = "vector_search"
    query_vector: list[float]
    num_candidates: int = Field(ge=1)

    @field_validator("query_vector")
    @classmethod
    def validate_vector(cls, value: list[float]) -> list[float]:
        if not value:
            raise ValueError("query_vector must not be empty")
        return value


class TextSearchStage(BaseModel):
    """Full-text stage over ``searchable_text``; rank is divided by ``score_divisor`` and capped at 1."""

    kind: Literal["text_search"] = "text_search"
    query: str
    num_candidates: int = Field(ge=1)
    score_divisor: float = Field(gt=0)

    @field_validator("query")
    @classmethod
    def validate_query(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be empty")
        return value


class MatchStage(BaseModel):
    """Equality filters plus an optional excluded (reference, translation) key."""

    kind: Literal["match"] = "match"
    book: str | None = None
    chapter: int | None = Field(None, ge=1)
    translation: str | None = None
    exclude_reference: str | None = None
    exclude_translation: str | None = None

    @model_validator(mode="after")
    def validate_exclusion(self) -> MatchStage:
        if (self.exclude_reference is None) != (self.exclude_translation is None):
            raise ValueError("exclude_reference and exclude_translation go together")
        return self

    @property
    def is_empty(self) -> bool:
        return (
            self.book is None
            and self.chapter is None
            and self.translation is None
            and self.exclude_reference is None
        )


class ProjectStage(BaseModel):
    """Output shape; context columns are only returned on request."""

    kind: Literal["project"] = "project"
    include_context: bool = False


SearchStage = Annotated[
    VectorSearchStage | TextSearchStage | MatchStage | ProjectStage,
    Field(discriminator="kind"),
]


class SearchPipeline(BaseModel):
    """Validated stage sequence: one search stage first, then match, then project."""

    stages: list[SearchStage]

    @model_validator(mode="after")
    def validate_order(self) -> SearchPipeline:
        if not self.stages:
            raise ValueError("pipeline has no stages")
        search_kinds = {"vector_search", "text_search"}
        kinds = [stage.kind for stage in self.stages]
        if kinds[0] not in search_kinds:
            raise ValueError("first stage must be vector_search or text_search")
        if sum(kind in search_kinds for kind in kinds) != 1:
            raise ValueError("pipeline needs exactly one search stage")
        if kinds.count("match") > 1:
            raise ValueError("at most one match stage is allowed")
        if kinds.count("project") > 1:
            raise ValueError("at most one project stage is allowed")
        if "project" in kinds and kinds[-1] != "project":
            raise ValueError("project stage must be last")
        return self

    @property
    def search(self) -> VectorSearchStage | TextSearchStage:
        return self.stages[0]  # type: ignore[return-value]

    @property
    def match(self) -> MatchStage | None:
        return next((s for s in self.stages if isinstance(s, MatchStage)), None)

    @property
    def project(self) -> ProjectStage:
        found = next((s for s in self.stages if isinstance(s, ProjectStage)), None)
        return found or ProjectStage()


def vector_pipeline(
    query_vector: list[float],
    num_candidates: int,
    *,
    match: MatchStage | None = None,
    include_context: bool = False,
) -> SearchPipeline:
    stages: list = [VectorSearchStage(query_vector=query_vector, num_candidates=num_candidates)]
    if match is not None and not match.is_empty:
        stages.append(match)
    stages.append(ProjectStage(include_context=include_context))
    return SearchPipeline(stages=stages)


def text_pipeline(
    query: str,
    num_candidates: int,
    score_divisor: float,
    *,
    match: MatchStage | None = None,
    include_context: bool = False,
) -> SearchPipeline:
    stages: list = [
        TextSearchStage(query=query, num_candidates=num_candidates, score_divisor=score_divisor)
    ]
    if match is not None and not match.is_empty:
        stages.append(match)
    stages.append(ProjectStage(include_context=include_context))
    return SearchPipeline(stages=stages)
