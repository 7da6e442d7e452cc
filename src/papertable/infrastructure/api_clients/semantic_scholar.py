# src/papertable/infrastructure/api_clients/semantic_scholar.py
"""
Semantic Scholar literature search client.

Uses the Semantic Scholar Academic Graph API.
API documentation: https://api.semanticscholar.org/api-docs/
Rate limit: about 1 req/s with an API key, much lower without one.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from papertable.domain.search import SearchFilters, SearchPage, SearchPaper
from papertable.infrastructure.api_clients.base import APIClient

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://api.semanticscholar.org/graph/v1"
KEYED_REQUEST_INTERVAL = 1.1
ANONYMOUS_REQUEST_INTERVAL = 3.0
MAX_PAGE_SIZE = 100


class SemanticScholarClient:
    FIELDS = [
        "paperId",
        "corpusId",
        "title",
        "abstract",
        "year",
        "citationCount",
        "authors",
        "openAccessPdf",
        "url",
        "venue",
        "publicationTypes",
        "publicationDate",
        "externalIds",
        "fieldsOfStudy",
        "tldr",
    ]

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        client: Optional[APIClient] = None,
        base_url: str = GRAPH_API_URL,
    ):
        interval = KEYED_REQUEST_INTERVAL if api_key else ANONYMOUS_REQUEST_INTERVAL
        self.client = client or APIClient(
            base_url, api_key=api_key or None, request_interval=interval
        )

    @staticmethod
    def build_params(
        query: str,
        filters: Optional[SearchFilters] = None,
        *,
        limit: int = 20,
        offset: Optional[int] = None,
        fields: Optional[List[str]] = None,
    ) -> Dict[str, str]:
        """Query-string parameters shared by the relevance and bulk endpoints."""
        filters = filters or SearchFilters()
        params: Dict[str, str] = {
            "query": query,
            "fields": ",".join(fields or SemanticScholarClient.FIELDS),
            "limit": str(min(MAX_PAGE_SIZE, max(1, int(limit)))),
        }
        if offset is not None:
            params["offset"] = str(max(0, int(offset)))
        if filters.year:
            params["year"] = filters.year
        if filters.open_access_pdf:
            params["openAccessPdf"] = ""
        if filters.fields_of_study:
            params["fieldsOfStudy"] = ",".join(filters.fields_of_study)
        if filters.publication_types:
            params["publicationTypes"] = ",".join(filters.publication_types)
        if filters.min_citation_count:
            params["minCitationCount"] = str(filters.min_citation_count)
        if filters.venue:
            params["venue"] = filters.venue
        return params

    async def search_papers(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        *,
        limit: int = 20,
        offset: int = 0,
        token: Optional[str] = None,
    ) -> SearchPage:
        """
        Search papers.

        Relevance ordering uses ``/paper/search`` (offset pagination, 1000
        results max). Any other sort goes to ``/paper/search/bulk``, which
        paginates with a continuation token instead.
        """
        filters = filters or SearchFilters()
        sort = (filters.sort or "relevance").strip()

        if sort == "relevance":
            params = self.build_params(query, filters, limit=limit, offset=offset)
            data = await self.client.get("/paper/search", params=params)
            papers = [self.to_search_paper(row) for row in data.get("data") or []]
            next_offset = data.get("next")
            logger.info(f"Semantic Scholar search '{query}': {len(papers)} of {data.get('total', 0)}")
            return SearchPage(
                total=int(data.get("total") or 0),
                offset=int(data.get("offset") or offset),
                papers=papers,
                next_offset=int(next_offset) if next_offset is not None else None,
            )

        params = self.build_params(query, filters, limit=limit)
        params["sort"] = sort
        if token:
            params["token"] = token
        data = await self.client.get("/paper/search/bulk", params=params)
        # The bulk endpoint ignores limit and returns up to 1000 rows per page.
        papers = [self.to_search_paper(row) for row in (data.get("data") or [])[:limit]]
        logger.info(f"Semantic Scholar bulk search '{query}' sort={sort}: {len(papers)} papers")
        return SearchPage(
            total=int(data.get("total") or 0),
            offset=0,
            papers=papers,
            token=data.get("token"),
        )

    async def get_paper(self, paper_id: str) -> SearchPaper:
        data = await self.client.get(
            f"/paper/{paper_id}", params={"fields": ",".join(self.FIELDS)}
        )
        return self.to_search_paper(data)

    @staticmethod
    def to_search_paper(data: Dict[str, Any]) -> SearchPaper:
        """Convert an S2 API paper object to SearchPaper."""
        authors = [a.get("name", "") for a in data.get("authors") or [] if a.get("name")]
        external_ids = data.get("externalIds") or {}

        pdf_url = None
        if data.get("openAccessPdf"):
            pdf_url = data["openAccessPdf"].get("url") or None

        tldr = data.get("tldr") or {}
        return SearchPaper(
            paper_id=str(data.get("paperId") or ""),
            title=data.get("title") or "",
            abstract=data.get("abstract") or "",
            authors=authors,
            year=data.get("year"),
            venue=data.get("venue") or None,
            publication_date=data.get("publicationDate"),
            citation_count=data.get("citationCount", 0) or 0,
            url=data.get("url"),
            pdf_url=pdf_url,
            doi=external_ids.get("DOI"),
            arxiv_id=external_ids.get("ArXiv"),
            fields_of_study=data.get("fieldsOfStudy") or [],
            publication_types=data.get("publicationTypes") or [],
            tldr=tldr.get("text") if isinstance(tldr, dict) else None,
        )

    async def close(self) -> None:
        await self.client.close()
