"""Access policy evaluated per retrieval request."""

from collections.abc import Iterable

from pydantic import BaseModel, Field, field_validator


class AccessPolicy(BaseModel):
    """Requester grant: minimum tier plus granted tags.

    A document is visible iff its access level is <= ``level`` and either it
    carries no tags or its tags intersect ``tags``.
    """

    level: int = Field(0, ge=0)
    tags: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Iterable[str] | None) -> frozenset[str]:
        if value is None:
            return frozenset()
        return frozenset(normalize_tag(tag) for tag in value if tag and tag.strip())

    def permits(self, access_level: int, tags: Iterable[str]) -> bool:
        """Check whether a document with the given level/tags is visible."""
        if access_level > self.level:
            return False
        doc_tags = {normalize_tag(tag) for tag in tags}
        if not doc_tags:
            return True
        return not doc_tags.isdisjoint(self.tags)


def normalize_tag(tag: str) -> str:
    """Normalize a free-form tag ("Módulo 1 " -> "módulo-1")."""
    return "-".join(tag.strip().lower().split())
