import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from functools import partial
from typing import Any, Iterator, List, Optional

from pydantic import BaseModel

from data_sources import RecordSource
from datasets import Dataset, get_dataset
from excel_sink import XLSX_MEDIA_TYPE, XlsxSink, stream_records
from record_schema import Schema, UntaggedFieldPolicy, extract_schema
from utils.buffer_pool import BufferPool
from utils.errors import ExportError, ExportTimeoutError
from utils.result import Result

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class LogContext:
    """Context manager for tracking and logging operation metrics"""
    def __init__(self, operation_name: str, **kwargs):
        self.operation_name = operation_name
        self.start_time = None
        self.request_id = kwargs.pop('request_id', str(uuid.uuid4())[:8])
        self.extra = kwargs

    def __enter__(self):
        self.start_time = time.monotonic()
        logger.info(f"Starting {self.operation_name}", extra={"request_id": self.request_id, **self.extra})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.monotonic() - self.start_time
        if exc_type:
            logger.error(
                f"Failed {self.operation_name} in {duration:.2f}s: {str(exc_val)}",
                extra={"request_id": self.request_id, "duration": duration, **self.extra},
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            logger.info(
                f"Completed {self.operation_name} in {duration:.2f}s",
                extra={"request_id": self.request_id, "duration": duration, **self.extra}
            )


@dataclass(frozen=True)
class ExportPayload:
    """
    A finished workbook ready to be sent.

    Attributes:
        filename: Attachment filename
        content: Complete .xlsx bytes
        row_count: Number of data rows written
        media_type: Response content type
    """
    filename: str
    content: bytes
    row_count: int
    media_type: str = XLSX_MEDIA_TYPE

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        view = memoryview(self.content)
        for start in range(0, len(view), chunk_size):
            yield bytes(view[start:start + chunk_size])

    def __str__(self) -> str:
        return f"{self.filename} ({self.row_count} rows, {len(self.content)} bytes)"


class ExportService:
    """
    Runs one export per request: validate, fetch, project, write.

    The service holds no per-request state. Every failure is logged with its
    full detail and returned as a failed Result carrying only a public
    message, so nothing internal leaks into HTTP responses.

    Args:
        source: Where records come from
        buffer_pool: Pool the workbook is serialized into
        timeout: Seconds allowed for fetch and write together
        workers: Row projection threads
        untagged_policy: Naming policy for fields without a display name
    """

    def __init__(
        self,
        source: RecordSource,
        buffer_pool: Optional[BufferPool] = None,
        timeout: float = 300.0,
        workers: int = 1,
        untagged_policy: UntaggedFieldPolicy = UntaggedFieldPolicy.FIELD_NAME
    ):
        self.source = source
        self.buffer_pool = buffer_pool or BufferPool()
        self.timeout = timeout
        self.workers = workers
        self.untagged_policy = untagged_policy

    async def export(self, dataset_name: Optional[str], filter_id: Optional[str] = None) -> Result[ExportPayload]:
        """
        Export a dataset as an .xlsx workbook.

        Args:
            dataset_name: Name of the dataset to export
            filter_id: Optional raw filter value from the query string

        Returns:
            Result[ExportPayload]: The workbook, or a failure with its HTTP status
        """
        request_id = str(uuid.uuid4())[:8]
        log_context = {
            "request_id": request_id,
            "dataset": dataset_name,
            "filter_id": filter_id
        }

        logger.info("Export requested", extra=log_context)

        try:
            dataset = get_dataset(dataset_name)
            filter_value = dataset.parse_filter(filter_id)
            schema = extract_schema(dataset.record_type, self.untagged_policy)

            deadline = time.monotonic() + self.timeout

            with LogContext("record fetch", **log_context):
                records = await self._fetch(dataset, filter_value, deadline)
            log_context["record_count"] = len(records)

            with LogContext("workbook generation", **log_context):
                payload = await self._render(dataset, schema, records, deadline)

            logger.info(f"Successfully exported {payload}", extra=log_context)
            return Result.ok(payload)

        except ExportError as e:
            if e.status_code < 500:
                logger.warning(f"Export rejected: {e}", extra=log_context)
            else:
                logger.error(f"Export failed: {type(e).__name__}: {e}", extra=log_context)
            return Result.from_error(e)
        except Exception as e:
            logger.exception("Unexpected error during export", extra={**log_context, "error": str(e)})
            return Result.server_error()

    async def _fetch(self, dataset: Dataset, filter_value: Any, deadline: float) -> List[BaseModel]:
        try:
            return await asyncio.wait_for(self.source.fetch(dataset, filter_value), self._remaining(deadline))
        except asyncio.TimeoutError:
            raise ExportTimeoutError(f"fetching {dataset.name} exceeded {self.timeout:.1f}s")

    async def _render(self, dataset: Dataset, schema: Schema, records: List[BaseModel], deadline: float) -> ExportPayload:
        cancelled = threading.Event()
        loop = asyncio.get_running_loop()
        job = loop.run_in_executor(None, partial(self._write_workbook, dataset, schema, records, cancelled))
        try:
            return await asyncio.wait_for(job, self._remaining(deadline))
        except asyncio.TimeoutError:
            # the writer thread stops at its next row and releases its buffer
            cancelled.set()
            raise ExportTimeoutError(f"writing {dataset.name} exceeded {self.timeout:.1f}s")

    def _write_workbook(self, dataset: Dataset, schema: Schema, records: List[BaseModel], cancelled: threading.Event) -> ExportPayload:
        with self.buffer_pool.acquire() as buffer:
            sink = XlsxSink(buffer, sheet_title=dataset.sheet_title)
            row_count = stream_records(sink, schema, records, workers=self.workers, cancelled=cancelled)
            return ExportPayload(filename=dataset.filename, content=buffer.getvalue(), row_count=row_count)

    def _remaining(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ExportTimeoutError(f"export exceeded {self.timeout:.1f}s")
        return remaining
