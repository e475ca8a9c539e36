"""Validated shapes for search plans."""

from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator

FileCategory = Literal["document", "image", "audio", "video", "data", "code"]


class _Property(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def key(self) -> tuple[str, str]:
        return self.name.lower(), self.value.lower()  # type: ignore[attr-defined]


class TagProperty(_Property):
    name: Literal["tag"] = "tag"
    value: str = Field(min_length=1)

    @field_validator("value")
    @classmethod
    def _strip_hash(cls, value: str) -> str:
        value = value.strip().lstrip("#")
        if not value:
            raise ValueError("tag must not be empty")
        return value


class FileTypeProperty(_Property):
    name: Literal["file_type"] = "file_type"
    value: str = Field(min_length=1)

    @field_validator("value")
    @classmethod
    def _strip_dot(cls, value: str) -> str:
        value = value.strip().lstrip(".").lower()
        if not value:
            raise ValueError("file type must not be empty")
        return value


class FileCategoryProperty(_Property):
    name: Literal["file_category"] = "file_category"
    value: FileCategory


class FrontmatterProperty(_Property):
    name: str = Field(min_length=1)
    value: str

    @field_validator("name")
    @classmethod
    def _strip_name(cls, name: str) -> str:
        name = name.strip()
        if not name:
            raise ValueError("property name must not be empty")
        return name


def _property_kind(value: Any) -> str:
    name = value.get("name") if isinstance(value, dict) else getattr(value, "name", None)
    if name in ("tag", "file_type", "file_category"):
        return name
    return "frontmatter"


PropertyFilter = Annotated[
    Union[
        Annotated[TagProperty, Tag("tag")],
        Annotated[FileTypeProperty, Tag("file_type")],
        Annotated[FileCategoryProperty, Tag("file_category")],
        Annotated[FrontmatterProperty, Tag("frontmatter")],
    ],
    Discriminator(_property_kind),
]


class SearchOperation(BaseModel):
    """One alternative match strategy; its fields are combined with AND."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    keywords: List[str] = Field(default_factory=list)
    filenames: List[str] = Field(default_factory=list)
    folders: List[str] = Field(default_factory=list)
    properties: List[PropertyFilter] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.keywords or self.filenames or self.folders or self.properties)


class SearchQueryExtraction(BaseModel):
    """Structured plan produced once per query."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    operations: List[SearchOperation]
    explanation: str
    lang: str = "en"
    confidence: float = Field(ge=0, le=1)
    needs_llm: bool = Field(default=False, alias="needsLLM")


class LLMSearchPlan(BaseModel):
    """Payload the LLM must return for a search query."""

    model_config = ConfigDict(extra="ignore")

    operations: List[SearchOperation] = Field(min_length=1)
    explanation: str = Field(min_length=1)
    lang: Optional[str] = None
    confidence: float = Field(ge=0, le=1)
