"""Bounded-parallel fact fetching across entities.

Every entity is fetched concurrently under a semaphore, each with its own
timeout. A failing or slow entity becomes ``None`` ("no data") without
affecting its siblings. Cancellation of the caller is never absorbed: if the
enclosing task is cancelled, the whole fan-out is cancelled with it.
"""

import asyncio
import logging
import sqlite3
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from traffic_light.config import get_settings
from traffic_light.errors import DataUnavailableError
from traffic_light.facts import store
from traffic_light.models import EntityRef, Fact
from traffic_light.observability.metrics import FACT_FETCH_DURATION, FACT_FETCHES_TOTAL

logger = logging.getLogger(__name__)

T = TypeVar("T")

FactFetcher = Callable[[EntityRef], Awaitable[Fact | None]]


async def fetch_all(
    entities: Sequence[EntityRef],
    fetch: Callable[[EntityRef], Awaitable[T]],
    *,
    source: str = "facts",
    timeout: float | None = None,
    concurrency: int | None = None,
) -> list[T | None]:
    """Run ``fetch`` for every entity and return results in input order.

    Args:
        entities: Entities to fetch for.
        fetch: Async callable returning the data for one entity.
        source: Label used in logs and metrics.
        timeout: Per-entity timeout in seconds (defaults to FACT_FETCH_TIMEOUT_SECONDS).
        concurrency: Maximum in-flight fetches (defaults to FACT_FETCH_CONCURRENCY).

    Returns:
        One entry per entity; ``None`` where the fetch failed or timed out.
    """
    if timeout is None or concurrency is None:
        settings = get_settings()
        timeout = settings.fact_fetch_timeout_seconds if timeout is None else timeout
        concurrency = settings.fact_fetch_concurrency if concurrency is None else concurrency

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _fetch_one(entity: EntityRef) -> T | None:
        async with semaphore:
            start = time.monotonic()
            try:
                result = await asyncio.wait_for(fetch(entity), timeout)
            except TimeoutError:
                logger.warning("%s fetch for %s timed out after %.1fs", source, entity, timeout)
                FACT_FETCHES_TOTAL.labels(source=source, status="timeout").inc()
                return None
            except Exception as exc:
                logger.warning("%s fetch for %s failed: %s", source, entity, exc)
                logger.debug("%s fetch failure details for %s", source, entity, exc_info=True)
                FACT_FETCHES_TOTAL.labels(source=source, status="error").inc()
                return None
            finally:
                FACT_FETCH_DURATION.labels(source=source).observe(time.monotonic() - start)
            FACT_FETCHES_TOTAL.labels(source=source, status="success").inc()
            return result

    return list(await asyncio.gather(*(_fetch_one(entity) for entity in entities)))


def store_fetcher(retriever_id: str, db_path: str | None = None) -> FactFetcher:
    """Fetch capability reading the latest ``retriever_id`` fact from the fact store.

    SQLite reads run in a worker thread. A missing row yields ``None``; an
    unreadable store raises DataUnavailableError.
    """

    def _read(entity: EntityRef) -> Fact | None:
        try:
            conn = store.get_connection(db_path)
        except sqlite3.Error as exc:
            msg = f"Fact store unavailable: {exc}"
            raise DataUnavailableError(msg) from exc
        try:
            return store.get_latest_fact(conn, entity, retriever_id)
        except sqlite3.Error as exc:
            msg = f"Failed to read {retriever_id} fact for {entity}: {exc}"
            raise DataUnavailableError(msg) from exc
        finally:
            conn.close()

    async def _fetch(entity: EntityRef) -> Fact | None:
        return await asyncio.to_thread(_read, entity)

    return _fetch
