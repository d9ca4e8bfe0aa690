"""
Retrieval Gateway

Fans one query vector out to the four similarity-search procedures and
joins on all of them. A failing category is logged and reported as
FAILED with no records; it never fails the others.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import structlog
from prometheus_client import Counter

from shared.config import MatchCounts
from shared.datastore import DatastoreClient

from .state import Category, Filters, RetrievedRecord

logger = structlog.get_logger()

retrieval_failures = Counter(
    'rag_chat_retrieval_failures_total',
    'Similarity-search calls that failed or timed out',
    ['category']
)

# Procedure name and which filters it accepts
PROCEDURES = {
    Category.SERVICES: ("match_services", ("city_id", "category_id")),
    Category.NEWS: ("match_news", ("category_id",)),
    Category.STADIUMS: ("match_can_stadiums", ("city_id",)),
    Category.PLACES: ("match_places_can", ("city_id",)),
}


class CategoryStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class CategoryResult:
    category: Category
    status: CategoryStatus
    records: List[RetrievedRecord] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class RetrievalResult:
    results: Dict[Category, CategoryResult]

    def records(self) -> Dict[Category, List[RetrievedRecord]]:
        return {category: result.records for category, result in self.results.items()}

    def similarities(self) -> List[float]:
        return [r.similarity for result in self.results.values() for r in result.records]

    @property
    def failed(self) -> List[Category]:
        return [c for c, r in self.results.items() if r.status == CategoryStatus.FAILED]


class RetrievalGateway:
    """Concurrent similarity search over services, news, stadiums and places."""

    def __init__(self, datastore: DatastoreClient, match_counts: MatchCounts, timeout: float = 8.0):
        self.datastore = datastore
        self.match_counts = match_counts
        self.timeout = timeout

    def _match_count(self, category: Category) -> int:
        return getattr(self.match_counts, category.value)

    def _params(self, category: Category, vector: Sequence[float], filters: Filters) -> Dict[str, Any]:
        _, accepted = PROCEDURES[category]
        params: Dict[str, Any] = {
            "query_embedding": list(vector),
            "match_count": self._match_count(category),
        }
        for name in accepted:
            params[name] = getattr(filters, name)
        return params

    async def _search(self, category: Category, vector: Sequence[float], filters: Filters) -> CategoryResult:
        procedure, _ = PROCEDURES[category]
        rows = await self.datastore.rpc(procedure, self._params(category, vector, filters))
        records = [RetrievedRecord.from_row(category, row) for row in rows if isinstance(row, dict)]
        # Stable sort keeps the datastore's order among equal scores
        records.sort(key=lambda r: r.similarity, reverse=True)
        records = records[:self._match_count(category)]
        status = CategoryStatus.OK if records else CategoryStatus.EMPTY
        return CategoryResult(category=category, status=status, records=records)

    async def retrieve(self, vector: Sequence[float], filters: Optional[Filters] = None) -> RetrievalResult:
        """
        Run all four searches concurrently and wait for every one to settle.

        Calls still running at the timeout are cancelled and reported FAILED.
        """
        filters = filters or Filters()
        tasks = {
            asyncio.create_task(self._search(category, vector, filters), name=category.value): category
            for category in PROCEDURES
        }

        done, pending = await asyncio.wait(
            tasks.keys(),
            timeout=self.timeout,
            return_when=asyncio.ALL_COMPLETED
        )

        results: Dict[Category, CategoryResult] = {}

        for task in pending:
            category = tasks[task]
            task.cancel()
            logger.warning("retrieval_timeout", category=category.value, timeout=self.timeout)
            retrieval_failures.labels(category=category.value).inc()
            results[category] = CategoryResult(category, CategoryStatus.FAILED, error="timeout")

        for task in done:
            category = tasks[task]
            try:
                results[category] = task.result()
            except Exception as e:
                logger.warning("retrieval_failed", category=category.value,
                               error=str(e), error_type=type(e).__name__)
                retrieval_failures.labels(category=category.value).inc()
                results[category] = CategoryResult(category, CategoryStatus.FAILED, error=str(e))

        logger.info(
            "retrieval_completed",
            **{category.value: len(results[category].records) for category in PROCEDURES},
            failed=[c.value for c in results if results[c].status == CategoryStatus.FAILED],
        )

        # Keep a fixed category order for callers
        return RetrievalResult(results={category: results[category] for category in PROCEDURES})
