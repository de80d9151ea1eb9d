import logging
import math
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from functools import partial
from itertools import islice
from typing import Any, Iterable, Iterator, List, Sequence, Union

import pandas as pd

from record_schema import FieldDescriptor, FieldKind, Schema
from utils.errors import ProjectionError, SchemaError

logger = logging.getLogger(__name__)

CellValue = Union[str, int, float, bool, date, datetime, time, None]

DEFAULT_BATCH_SIZE = 256

_NATIVE_TYPES = (str, bool, int, float, datetime, date, time)


@dataclass
class Grid:
    """
    Header row plus data rows, every row exactly as wide as the header.

    Attributes:
        headers: Column headers in schema order
        rows: Data rows in record order
    """
    headers: List[str]
    rows: List[List[CellValue]] = field(default_factory=list)

    def __post_init__(self):
        width = len(self.headers)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ProjectionError(f"row has {len(row)} cells, expected {width}", index, len(row))

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[List[CellValue]]:
        yield list(self.headers)
        yield from self.rows


def normalize_cell(value: Any) -> CellValue:
    """
    Convert a leaf value to a spreadsheet-native cell value.

    Dates stay dates and numbers stay numbers. Missing values coming from
    pandas (NaN, NaT) become empty cells.
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, Enum):
        return normalize_cell(value.value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, _NATIVE_TYPES):
        return value
    # numpy scalars from pandas-backed sources
    if pd.api.types.is_scalar(value):
        if pd.isna(value):
            return None
        if pd.api.types.is_bool(value):
            return bool(value)
        if pd.api.types.is_integer(value):
            return int(value)
        if pd.api.types.is_float(value):
            return float(value)
    return str(value)


def _step(value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        return value[name]
    return getattr(value, name)


def project_record(schema: Schema, record_index: int, record: Any) -> List[CellValue]:
    """
    Project one record onto the schema's columns.

    Raises:
        ProjectionError: If a field path cannot be resolved on the record
    """
    row: List[CellValue] = []

    def walk(fields: Sequence[FieldDescriptor], value: Any):
        for descriptor in fields:
            try:
                child = _step(value, descriptor.name)
            except (AttributeError, KeyError, TypeError) as e:
                raise ProjectionError(
                    f"cannot resolve {'.'.join(descriptor.path)}: {e}",
                    record_index, len(row), descriptor.path
                ) from e
            if descriptor.kind is FieldKind.NESTED:
                if child is None:
                    raise ProjectionError(
                        f"embedded record {'.'.join(descriptor.path)} is missing",
                        record_index, len(row), descriptor.path
                    )
                walk(descriptor.children, child)
            else:
                row.append(normalize_cell(child))

    walk(schema.fields, record)
    if len(row) != len(schema):
        raise ProjectionError(f"row has {len(row)} cells, expected {len(schema)}", record_index, len(row))
    return row


def _batches(records: Iterable[Any], size: int) -> Iterator[List[Any]]:
    iterator = iter(records)
    while True:
        batch = list(islice(iterator, size))
        if not batch:
            return
        yield batch


def iter_rows(schema: Schema, records: Iterable[Any], workers: int = 1, batch_size: int = DEFAULT_BATCH_SIZE) -> Iterator[List[CellValue]]:
    """
    Lazily project records into rows, in record order.

    With more than one worker, each batch is projected on a thread pool.
    ``Executor.map`` hands results back in submission order, so the caller
    always receives rows in record order. At most one batch is in
    flight at a time.

    Args:
        schema: Schema the records were built for
        records: Records to project
        workers: Number of projection threads
        batch_size: Records submitted to the pool per round

    Yields:
        List[CellValue]: One row per record
    """
    if len(schema) == 0:
        raise SchemaError("cannot project rows for an empty schema")

    if workers <= 1:
        for index, record in enumerate(records):
            yield project_record(schema, index, record)
        return

    project = partial(project_record, schema)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="row-projection") as pool:
        offset = 0
        for batch in _batches(records, batch_size):
            yield from pool.map(project, range(offset, offset + len(batch)), batch)
            offset += len(batch)


def project_rows(schema: Schema, records: Iterable[Any], workers: int = 1) -> Grid:
    """
    Project a whole record collection into a Grid.

    An empty collection yields a header-only Grid. Any unresolvable field
    aborts the projection; no partial Grid is returned.

    Raises:
        ProjectionError: Identifying the failing record index and column
    """
    rows = list(iter_rows(schema, records, workers=workers))
    logger.debug(f"Projected {len(rows)} rows for {schema.record_type.__name__}")
    return Grid(headers=list(schema.headers), rows=rows)
