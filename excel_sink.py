import logging
import threading
from datetime import datetime, time, timezone
from typing import Any, BinaryIO, Iterable, Optional, Protocol, Sequence

from openpyxl import Workbook

from record_schema import Schema
from row_projection import CellValue, iter_rows
from utils.errors import ExportTimeoutError, SerializationError

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class TabularSink(Protocol):
    """Receives a header row, then data rows, then exactly one finalize or abort."""

    def write_header(self, headers: Sequence[str]) -> None: ...

    def write_row(self, cells: Sequence[CellValue]) -> None: ...

    def finalize(self) -> None: ...

    def abort(self) -> None: ...


def _to_excel_value(value: CellValue) -> CellValue:
    # Excel cells carry no timezone; store aware values as naive UTC
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    if isinstance(value, time) and value.tzinfo is not None:
        return value.replace(tzinfo=None)
    return value


class XlsxSink:
    """
    Single-sheet .xlsx writer backed by an openpyxl write-only workbook.

    Rows are appended as native typed cells and flushed by openpyxl as they
    arrive; the zip container is only assembled into ``stream`` on finalize.

    Args:
        stream: Writable binary stream receiving the finished workbook
        sheet_title: Title of the single worksheet
    """

    def __init__(self, stream: BinaryIO, sheet_title: str = "Sheet1"):
        self._stream = stream
        self._workbook = Workbook(write_only=True)
        try:
            self._sheet = self._workbook.create_sheet(title=sheet_title)
        except ValueError as e:
            raise SerializationError(f"invalid sheet title {sheet_title!r}: {e}") from e
        self._width: Optional[int] = None
        self._closed = False
        self.rows_written = 0

    def write_header(self, headers: Sequence[str]) -> None:
        self._ensure_open()
        if self._width is not None:
            raise SerializationError("header row already written")
        self._append(list(headers))
        self._width = len(headers)

    def write_row(self, cells: Sequence[CellValue]) -> None:
        self._ensure_open()
        if self._width is None:
            raise SerializationError("data row written before header row")
        if len(cells) != self._width:
            raise SerializationError(f"row {self.rows_written} has {len(cells)} cells, expected {self._width}")
        self._append([_to_excel_value(cell) for cell in cells])
        self.rows_written += 1

    def finalize(self) -> None:
        self._ensure_open()
        if self._width is None:
            raise SerializationError("workbook finalized without a header row")
        self._closed = True
        try:
            self._workbook.save(self._stream)
        except Exception as e:
            raise SerializationError(f"failed to save workbook: {e}") from e

    def abort(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._workbook.close()

    def _append(self, values: list) -> None:
        try:
            self._sheet.append(values)
        except Exception as e:
            raise SerializationError(f"failed to append row {self.rows_written}: {e}") from e

    def _ensure_open(self) -> None:
        if self._closed:
            raise SerializationError("workbook is already closed")


def _check_cancelled(cancelled: Optional[threading.Event], stage: str, done: int) -> None:
    if cancelled is not None and cancelled.is_set():
        raise ExportTimeoutError(f"export cancelled while {stage} after {done} rows")


def stream_records(
    sink: TabularSink,
    schema: Schema,
    records: Iterable[Any],
    workers: int = 1,
    cancelled: Optional[threading.Event] = None
) -> int:
    """
    Write a header and one row per record into a sink, then finalize it.

    Every record is projected before the sink sees any data row, so a
    projection failure leaves the sink with no rows at all. The sink is the
    only writer and receives rows in record order. If projection fails, the
    cancel event is set or the sink itself errors, the sink is aborted
    instead of finalized and the error propagates.

    Returns:
        int: Number of data rows written
    """
    count = 0
    try:
        rows = []
        for row in iter_rows(schema, records, workers=workers):
            _check_cancelled(cancelled, "projecting", len(rows))
            rows.append(row)

        sink.write_header(schema.headers)
        for row in rows:
            _check_cancelled(cancelled, "writing", count)
            sink.write_row(row)
            count += 1
        sink.finalize()
    except BaseException:
        sink.abort()
        raise
    return count
