"""Pydantic models for the wiki graph."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import NOTE_TYPES

NoteType = Literal["wiki", "category", "disambiguation", "other"]

# Answer from the confirmation collaborator. "dismissed" covers a closed
# dialog or no answer at all and is treated exactly like "cancel".
Decision = Literal["proceed", "cancel", "dismissed"]


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return [str(value)]


class NoteHeader(BaseModel):
    """Frontmatter of a wiki note.

    Only the fields the graph needs are typed; anything else in the header
    is kept as an extra field so it survives a rewrite.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    note_type: str | None = Field(default=None, alias="note-type")
    wiki_tag: str | None = Field(default=None, alias="wiki-tag")
    tags: list[str] = Field(default_factory=list)
    aliases: list[str] = Field(default_factory=list)
    description: str | None = None

    @field_validator("tags", "aliases", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list[str]:
        return _as_str_list(value)

    @field_validator("wiki_tag", "note_type", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @property
    def kind(self) -> NoteType:
        if self.note_type in NOTE_TYPES:
            return self.note_type  # type: ignore[return-value]
        return "other"


class EntryCandidate(BaseModel):
    """A new entry as produced by the identity-token parser."""

    wiki_tag: str
    title: str
    aliases: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    description: str = ""
    title_entities: list[str] = Field(default_factory=list)
    note_type: NoteType = "wiki"


class SimilarityMatch(BaseModel):
    """An existing note that looks like the candidate entry."""

    wiki_tag: str
    path: str
    similarity: float
    intersection_size: int


class InsertionResult(BaseModel):
    """Outcome of adding one entry to the library."""

    status: Literal["inserted", "cancelled", "duplicate", "exists"]
    wiki_tag: str
    path: str | None = None
    matches: list[SimilarityMatch] = Field(default_factory=list)
    component: str | None = None  # Key of the component holding the new node
    merged_components: list[str] = Field(default_factory=list)  # Absorbed component keys
    updated_paths: list[str] = Field(default_factory=list)  # Notes rewritten on disk


class ComponentInfo(BaseModel):
    """A strongly connected component, as reported to users."""

    key: str
    members: list[str]
    parents: list[str] = Field(default_factory=list)
    children: list[str] = Field(default_factory=list)


class NodeInfo(BaseModel):
    """One node of the graph, as reported to users."""

    wiki_tag: str
    path: str
    note_type: NoteType
    tags: list[str] = Field(default_factory=list)
    inherited_tags: list[str] = Field(default_factory=list)
    aliases: list[str] = Field(default_factory=list)
    parents: list[str] = Field(default_factory=list)
    children: list[str] = Field(default_factory=list)
    component: str | None = None


class GraphSummary(BaseModel):
    """Counts reported by ``wg status``."""

    root: str
    nodes: int
    components: int
    multi_member_components: int
    outer_references: int
    duplicate_groups: int
    no_header: int
    invalid_headers: int
    by_type: dict[str, int] = Field(default_factory=dict)


class RefreshResult(BaseModel):
    """Outcome of a full rebuild."""

    summary: GraphSummary
    updated_paths: list[str] = Field(default_factory=list)
    diagnostics_path: str
