"""
Domain model for the public legal knowledge base.

Documents and chunks mirror the rows of the ``public_legal_docs`` and
``public_legal_chunks`` tables. Legal area and document type values are the
ones the back office has always stored; English aliases are accepted on input.
"""

import uuid
from enum import Enum
from typing import Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _alias_key(value: str) -> str:
    return value.strip().lower().replace("_", "-").replace(" ", "-")


class _AliasedEnum(str, Enum):
    """String enum that also resolves English aliases (``"case-law"`` etc.)."""

    @classmethod
    def _aliases(cls) -> dict:
        return {}

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        key = _alias_key(value)
        for member in cls:
            if _alias_key(member.value) == key or _alias_key(member.name) == key:
                return member
        return cls._aliases().get(key)

    @classmethod
    def choices(cls) -> list[str]:
        return [m.value for m in cls]


class LegalArea(_AliasedEnum):
    """Domain category a public document is filed under."""
    CRIMINAL = "ceza"
    OBLIGATIONS = "borçlar"
    ENFORCEMENT_BANKRUPTCY = "icra_iflas"
    CIVIL = "medeni"
    COMMERCIAL = "ticaret"
    CONSTITUTIONAL = "anayasa"
    GENERAL = "genel"

    @classmethod
    def _aliases(cls) -> dict:
        return {
            "borclar": cls.OBLIGATIONS,
            "enforcement-and-bankruptcy": cls.ENFORCEMENT_BANKRUPTCY,
            "bankruptcy": cls.ENFORCEMENT_BANKRUPTCY,
        }


class DocumentType(_AliasedEnum):
    """Kind of legal source."""
    STATUTE = "kanun"
    CASE_LAW = "içtihat"
    ARTICLE = "makale"
    GENERAL = "genel"

    @classmethod
    def _aliases(cls) -> dict:
        return {
            "ictihat": cls.CASE_LAW,
            "caselaw": cls.CASE_LAW,
            "legislation": cls.STATUTE,
        }


class Visibility(str, Enum):
    """Whether a document feeds the shared knowledge base or a tenant's private one."""
    PUBLIC = "public"
    PRIVATE = "private"

    @property
    def is_public(self) -> bool:
        return self is Visibility.PUBLIC


def is_document_id(value) -> bool:
    """True when *value* is a UUID string, the only shape a document id takes."""
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Document:
    """One ingested source file."""
    title: str
    legal_area: LegalArea
    document_type: DocumentType
    storage_path: str
    text_length: int
    court: Optional[str] = None
    year: Optional[int] = None
    visibility: Visibility = Visibility.PUBLIC
    source_url: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "legal_area": self.legal_area.value,
            "document_type": self.document_type.value,
            "court": self.court,
            "year": self.year,
            "storage_path": self.storage_path,
            "text_length": self.text_length,
            "visibility": self.visibility.value,
            "source_url": self.source_url,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict) -> "Document":
        """Build a Document from a ``public_legal_docs`` row."""
        return cls(
            id=str(row["id"]),
            title=row["title"],
            legal_area=LegalArea(row["legal_area"]),
            document_type=DocumentType(row["doc_type"]),
            court=row.get("court"),
            year=row.get("year"),
            storage_path=row["storage_path"],
            text_length=row.get("text_length") or 0,
            visibility=Visibility(row.get("visibility") or "public"),
            source_url=row.get("source_url"),
            created_at=row.get("created_at") or _utcnow(),
        )


@dataclass
class Chunk:
    """A fragment of a document's text with its embedding vector."""
    document_id: str
    chunk_index: int
    content: str
    embedding: list[float]
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "embedding_dimensions": len(self.embedding),
            "created_at": self.created_at.isoformat(),
        }
