"""Similarity search against the backend's vector index."""

from typing import Any

import structlog
from pydantic import ValidationError

from video_search_client.backend_client import BackendTransport
from video_search_client.errors import (
    InvalidRequest,
    NotConfigured,
    ProtocolError,
    SearchError,
    StatsUnavailable,
    TransportError,
)
from video_search_client.models import (
    BatchSearchResponse,
    IndexStats,
    SearchRequest,
    SearchResponse,
    SearchResult,
)
from video_search_client.observability import get_trace_id
from video_search_client.time_locator import ResultTimeLocator

logger = structlog.get_logger()

SEARCH_PATH = "/api/search"
DATE_RANGE_PATH = "/api/search/daterange"
BATCH_PATH = "/api/search/batch"
STATS_PATH = "/api/stats"
DATES_PATH = "/api/dates"
CLEAR_PATH = "/api/clear"


def build_request(query: str, **options: Any) -> SearchRequest:
    """Validate search inputs locally.

    Raises:
        InvalidRequest: If the query is blank or an option is out of range.
    """
    try:
        return SearchRequest(query=query, **options)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}" for err in e.errors()
        )
        raise InvalidRequest(f"Invalid search request: {problems}") from e


class SearchClient:
    """Builds filtered search requests and normalizes the results."""

    def __init__(self, transport: BackendTransport, locator: ResultTimeLocator | None = None):
        self._transport = transport
        self._locator = locator or ResultTimeLocator()

    async def search(self, request: SearchRequest | str, **options: Any) -> SearchResponse:
        """Run a similarity search.

        Args:
            request: A SearchRequest, or a query string combined with options
                such as top_k, similarity_threshold, date_filter, category_filter.

        Returns:
            SearchResponse with results in backend order.

        Raises:
            InvalidRequest: On local validation failure (no request is sent).
            NotConfigured: If no endpoint is set.
            SearchError: If the backend rejects the search.
        """
        if not isinstance(request, SearchRequest):
            request = build_request(request, **options)

        response = await self._transport.request("search", "POST", SEARCH_PATH, json=request.to_wire())
        if not response.is_success:
            detail = self._transport.error_detail(response)
            logger.error("Search failed", status=response.status_code, detail=detail)
            raise SearchError(f"Search failed: {detail}")

        data = self._transport.decode_json(response, "search")
        results = self._normalize(data, request)
        logger.info(
            "search",
            trace_id=get_trace_id(),
            query_preview=request.query[:50],
            top_k=request.top_k,
            hits=len(results),
        )
        return SearchResponse(results=results, count=len(results))

    async def search_by_date_range(
        self,
        query: str,
        start_date: str,
        end_date: str,
        top_k: int = 10,
        similarity_threshold: float = 0.5,
        category_filter: str | None = None,
    ) -> SearchResponse:
        """Search restricted to videos dated between start_date and end_date."""
        request = build_request(
            query,
            top_k=top_k,
            similarity_threshold=similarity_threshold,
            category_filter=category_filter,
        )
        if not start_date or not end_date:
            raise InvalidRequest("Both start_date and end_date are required")

        body = request.to_wire()
        body["start_date"] = start_date
        body["end_date"] = end_date
        response = await self._transport.request("search_daterange", "POST", DATE_RANGE_PATH, json=body)
        if not response.is_success:
            raise SearchError(f"Search failed: {self._transport.error_detail(response)}")

        data = self._transport.decode_json(response, "search_daterange")
        results = self._normalize(data, request)
        return SearchResponse(results=results, count=len(results))

    async def batch_search(self, queries: list[str], top_k: int = 5) -> BatchSearchResponse:
        """Run several queries in one request."""
        cleaned = [q.strip() for q in queries if q and q.strip()]
        if not cleaned:
            raise InvalidRequest("Batch search needs at least one non-empty query")
        if not 1 <= top_k <= 100:
            raise InvalidRequest("top_k must be between 1 and 100")

        response = await self._transport.request(
            "search_batch", "POST", BATCH_PATH, json={"queries": cleaned, "top_k": top_k}
        )
        if not response.is_success:
            raise SearchError(f"Batch search failed: {self._transport.error_detail(response)}")

        data = self._transport.decode_json(response, "search_batch")
        raw = data.get("results", {}) if isinstance(data, dict) else {}
        if isinstance(raw, list):
            raw = {item.get("query", ""): item.get("results", []) for item in raw if isinstance(item, dict)}

        batch: dict[str, list[SearchResult]] = {}
        for query, hits in raw.items():
            request = SearchRequest(query=query or "batch", top_k=top_k, similarity_threshold=0.0)
            batch[query] = self._normalize({"results": hits}, request)
        return BatchSearchResponse(results=batch)

    async def list_available_dates(self) -> list[str]:
        """Dates that have indexed videos, for the date filter."""
        data = await self._auxiliary("dates", DATES_PATH)
        dates = data.get("dates") if isinstance(data, dict) else None
        if not isinstance(dates, list):
            raise StatsUnavailable("Dates response did not contain a list of dates")
        return [str(d) for d in dates]

    async def get_index_stats(self) -> IndexStats:
        """Vector index statistics."""
        data = await self._auxiliary("stats", STATS_PATH)
        try:
            return IndexStats.model_validate(data)
        except ValidationError as e:
            raise StatsUnavailable("Index statistics response was malformed") from e

    async def clear_index(self) -> dict[str, Any]:
        """Delete every vector from the index."""
        response = await self._transport.request("clear_index", "POST", CLEAR_PATH)
        if not response.is_success:
            raise SearchError(f"Failed to clear index: {self._transport.error_detail(response)}")
        logger.warning("Vector index cleared")
        return self._transport.decode_json(response, "clear_index")

    async def _auxiliary(self, operation: str, path: str) -> Any:
        """Read-only helper query; every backend failure becomes StatsUnavailable."""
        try:
            response = await self._transport.request(operation, "GET", path)
            if not response.is_success:
                raise StatsUnavailable(
                    f"Failed to fetch {operation}: {self._transport.error_detail(response)}"
                )
            return self._transport.decode_json(response, operation)
        except NotConfigured:
            raise
        except (TransportError, ProtocolError) as e:
            logger.warning("Auxiliary query failed", operation=operation, error=str(e))
            raise StatsUnavailable(f"Failed to fetch {operation}: {e}") from e

    def _normalize(self, data: Any, request: SearchRequest) -> list[SearchResult]:
        """Parse hits, keeping backend order.

        Hits under the threshold or past top_k are dropped. Ordering is not
        corrected; a violation is only logged.
        """
        raw_results = data.get("results") if isinstance(data, dict) else None
        if raw_results is None:
            raw_results = []
        if not isinstance(raw_results, list):
            raise SearchError("Search response 'results' is not a list")

        results: list[SearchResult] = []
        dropped = 0
        for raw in raw_results:
            try:
                result = SearchResult.model_validate(raw)
            except ValidationError as e:
                raise SearchError(
                    f"Search response contained a malformed result: {e.error_count()} errors"
                ) from e
            if result.similarity_score < request.similarity_threshold or len(results) >= request.top_k:
                dropped += 1
                continue
            results.append(self._locator.annotate(result))

        if dropped:
            logger.warning("Dropped results outside request bounds", dropped=dropped)

        scores = [r.similarity_score for r in results]
        if any(a < b for a, b in zip(scores, scores[1:])):
            logger.warning("Search results are not in descending score order", scores=scores)
        return results
