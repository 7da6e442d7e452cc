"""Literature search value objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class SearchFilters:
    """Filters accepted by the scholarly search endpoint."""

    year: Optional[str] = None  # "2020-2024", "2023-" or "-2020"
    open_access_pdf: bool = False
    fields_of_study: List[str] = field(default_factory=list)
    publication_types: List[str] = field(default_factory=list)
    min_citation_count: Optional[int] = None
    venue: Optional[str] = None
    sort: str = "relevance"


@dataclass
class SearchPaper:
    """One scholarly search hit."""

    paper_id: str
    title: str
    abstract: str = ""
    authors: List[str] = field(default_factory=list)
    year: Optional[int] = None
    venue: Optional[str] = None
    publication_date: Optional[str] = None
    citation_count: int = 0
    url: Optional[str] = None
    pdf_url: Optional[str] = None
    doi: Optional[str] = None
    arxiv_id: Optional[str] = None
    fields_of_study: List[str] = field(default_factory=list)
    publication_types: List[str] = field(default_factory=list)
    tldr: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paper_id": self.paper_id,
            "title": self.title,
            "abstract": self.abstract,
            "authors": self.authors,
            "year": self.year,
            "venue": self.venue,
            "publication_date": self.publication_date,
            "citation_count": self.citation_count,
            "url": self.url,
            "pdf_url": self.pdf_url,
            "doi": self.doi,
            "arxiv_id": self.arxiv_id,
            "fields_of_study": self.fields_of_study,
            "publication_types": self.publication_types,
            "tldr": self.tldr,
        }


@dataclass
class SearchPage:
    """One page of search results."""

    total: int
    offset: int
    papers: List[SearchPaper]
    next_offset: Optional[int] = None
    token: Optional[str] = None
