"""SQLAlchemy ORM models of the protein record store."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Taxonomy(Base):
    __tablename__ = "taxonomy"

    taxon_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    # Not a foreign key: taxonomy dumps are loaded in arbitrary order
    parent_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    rank: Mapped[str] = mapped_column(String(50), default="no rank")
    name: Mapped[str] = mapped_column(String(255), default="")

    def __repr__(self) -> str:
        return f"<Taxonomy {self.taxon_id} {self.name} ({self.rank})>"


class ReferenceEntry(Base):
    """Reference database entry (local UniProtKB mirror) with its organism taxon."""

    __tablename__ = "reference_entries"

    accession: Mapped[str] = mapped_column(String(50), primary_key=True)
    taxon_id: Mapped[int] = mapped_column(Integer, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(500))

    def __repr__(self) -> str:
        return f"<ReferenceEntry {self.accession} -> {self.taxon_id}>"


class Protein(Base):
    __tablename__ = "proteins"

    protein_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    accession: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    sequence: Mapped[str] = mapped_column(Text)
    source: Mapped[Optional[str]] = mapped_column(String(100))

    # Annotation written by the BLAST pipeline
    taxon_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("taxonomy.taxon_id"), index=True
    )
    annotation_source: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    annotated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    search_hits: Mapped[list["SearchHit"]] = relationship(
        back_populates="protein", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Protein {self.protein_id} {self.accession}>"


class SearchHit(Base):
    """Protein identified in an experiment (one row per search engine hit)."""

    __tablename__ = "search_hits"

    hit_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    experiment_id: Mapped[int] = mapped_column(Integer, index=True)
    protein_id: Mapped[int] = mapped_column(ForeignKey("proteins.protein_id"), index=True)
    search_engine: Mapped[Optional[str]] = mapped_column(String(50))

    protein: Mapped["Protein"] = relationship(back_populates="search_hits")

    def __repr__(self) -> str:
        return f"<SearchHit {self.hit_id} exp={self.experiment_id} protein={self.protein_id}>"
