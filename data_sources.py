import logging
from collections.abc import Mapping
from typing import Any, List, Optional, Protocol

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError, InvalidRequestError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from config import Settings
from datasets import Dataset
from records import hydrate
from utils.errors import ConfigError, FetchError

logger = logging.getLogger(__name__)

# Plain and sync-driver URLs are served by the matching asyncio driver
ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "sqlite+pysqlite": "sqlite+aiosqlite",
    "postgresql": "postgresql+asyncpg",
    "postgresql+psycopg2": "postgresql+asyncpg",
}


class RecordSource(Protocol):
    """Read-only supplier of records for a dataset."""

    name: str

    async def fetch(self, dataset: Dataset, filter_value: Any = None) -> List[BaseModel]: ...

    async def aclose(self) -> None: ...


def _hydrate_all(dataset: Dataset, rows: List[Any]) -> List[BaseModel]:
    records = []
    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            raise FetchError(f"{dataset.name} row {index} is not an object: {type(row).__name__}")
        try:
            records.append(hydrate(dataset.record_type, row))
        except PydanticValidationError as e:
            raise FetchError(f"{dataset.name} row {index} does not match {dataset.record_type.__name__}: {e}") from e
    return records


def async_database_url(database_url: str) -> URL:
    url = make_url(database_url)
    driver = ASYNC_DRIVERS.get(url.drivername)
    return url.set(drivername=driver) if driver else url


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    Create the asyncio SQLAlchemy engine with pool limits taken from settings.

    Idle connections map to ``pool_size``, the remainder up to the open
    connection limit to ``max_overflow``. SQLite keeps SQLAlchemy's default
    pool, which takes no sizing arguments.

    Raises:
        ConfigError: If the database URL cannot be parsed or has no asyncio driver
    """
    try:
        url = async_database_url(settings.database_url)
        if url.get_backend_name() == "sqlite":
            return create_async_engine(url)
        return create_async_engine(
            url,
            pool_size=settings.db_max_idle_conns,
            max_overflow=settings.db_max_open_conns - settings.db_max_idle_conns,
            pool_recycle=settings.db_conn_max_lifetime,
            pool_pre_ping=True,
        )
    except (ArgumentError, InvalidRequestError, ImportError) as e:
        raise ConfigError(f"Invalid DATABASE_URL: {e}") from e


class SqlRecordSource:
    """
    Fetch records with SQLAlchemy's asyncio engine.

    The query runs as part of the calling task, so cancelling the task (an
    export deadline, a dropped request) cancels the query as well. The
    connection is scoped to the query and returned to the pool on every exit
    path, cancellation included.
    """
    name = "database"

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def fetch(self, dataset: Dataset, filter_value: Any = None) -> List[BaseModel]:
        filtered = filter_value is not None
        statement = text(dataset.sql(filtered))
        params = {"filter_id": filter_value} if filtered else {}
        try:
            async with self._engine.connect() as connection:
                result = await connection.execute(statement, params)
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            raise FetchError(f"query for {dataset.name} failed: {e}") from e
        logger.debug(f"Fetched {len(rows)} rows for {dataset.name}")
        return _hydrate_all(dataset, rows)

    async def aclose(self) -> None:
        await self._engine.dispose()


class HttpRecordSource:
    """
    Fetch records from an upstream JSON API.

    ``GET {base_url}/{dataset}`` must answer with a JSON array of objects.
    A filter is passed as the ``filter_id`` query parameter.
    """
    name = "api"

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    async def fetch(self, dataset: Dataset, filter_value: Any = None) -> List[BaseModel]:
        params = {"filter_id": str(filter_value)} if filter_value is not None else None
        url = f"/{dataset.name}"
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise FetchError(f"upstream request timed out: GET {url}") from e
        except httpx.HTTPStatusError as e:
            raise FetchError(f"upstream answered HTTP {e.response.status_code} for GET {url}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"upstream request failed: GET {url}: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchError(f"upstream returned invalid JSON for GET {url}") from e
        if not isinstance(payload, list):
            raise FetchError(f"upstream returned {type(payload).__name__} instead of a list for GET {url}")
        return _hydrate_all(dataset, payload)

    async def aclose(self) -> None:
        await self._client.aclose()


def create_record_source(settings: Settings) -> RecordSource:
    if settings.record_source == "api":
        return HttpRecordSource(
            settings.upstream_api_url,
            token=settings.upstream_api_token,
            timeout=settings.export_timeout,
        )
    return SqlRecordSource(create_engine_from_settings(settings))
