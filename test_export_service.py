import asyncio
import io
import logging
import time
from datetime import date
from http import HTTPStatus
from unittest.mock import patch

import pandas as pd
import pytest

from data_sources import SqlRecordSource
from excel_sink import XlsxSink
from export_service import ExportPayload, ExportService, LogContext
from records import Salary
from utils.buffer_pool import BufferPool
from utils.errors import FetchError


def run(coro):
    return asyncio.run(coro)


class StubSource:
    """Record source returning canned records, optionally after a delay."""
    name = "stub"

    def __init__(self, records=None, delay=0.0, error=None):
        self.records = records or []
        self.delay = delay
        self.error = error
        self.calls = []

    async def fetch(self, dataset, filter_value=None):
        self.calls.append((dataset.name, filter_value))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.records

    async def aclose(self):
        pass


class SlowSalary:
    """Salary-shaped record whose amount takes a while to read."""

    def __init__(self, employee_id):
        self.employee_id = employee_id
        self.from_date = date(2020, 1, 1)
        self.to_date = None

    @property
    def amount(self):
        time.sleep(0.05)
        return 1.0


class TestExportService:
    """
    Tests for the ExportService class.
    """

    def test_successful_export_returns_workbook(self, sqlite_engine):
        service = ExportService(SqlRecordSource(sqlite_engine), workers=2)

        result = run(service.export("salaries"))

        assert result.is_success()
        payload = result.data
        assert payload.filename == "salaries.xlsx"
        assert payload.row_count == 3
        df = pd.read_excel(io.BytesIO(payload.content))
        assert df["Employee ID"].tolist() == [10001, 10001, 10002]

    def test_filter_value_is_parsed_and_forwarded(self):
        source = StubSource()
        service = ExportService(source)

        result = run(service.export("employees", "10001"))

        assert result.is_success()
        assert source.calls == [("employees", 10001)]

    @pytest.mark.parametrize(
        "dataset, filter_id, message",
        [
            (None, None, "Missing required query parameter: dataset"),
            ("  ", None, "Missing required query parameter: dataset"),
            ("payroll", None, "Unknown dataset 'payroll'"),
            ("salaries", "abc", "filter_id must be of type int"),
        ],
        ids=["missing", "blank", "unknown", "bad-filter"]
    )
    def test_invalid_requests_fail_with_400(self, dataset, filter_id, message):
        source = StubSource()
        service = ExportService(source)

        result = run(service.export(dataset, filter_id))

        assert result.is_failure()
        assert result.status_code == HTTPStatus.BAD_REQUEST
        assert message in result.error
        assert source.calls == []

    def test_fetch_error_is_reported_without_details(self):
        service = ExportService(StubSource(error=FetchError("password authentication failed for user admin")))

        result = run(service.export("salaries"))

        assert result.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
        assert result.error == "Error fetching records"

    def test_slow_fetch_times_out(self):
        service = ExportService(StubSource(delay=1.0), timeout=0.05)

        result = run(service.export("salaries"))

        assert result.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
        assert result.error == "Export timed out"

    def test_slow_workbook_generation_times_out(self):
        records = [SlowSalary(employee_id=i) for i in range(40)]
        pool = BufferPool(max_idle=1)
        service = ExportService(StubSource(records=records), buffer_pool=pool, timeout=0.2)

        with patch.object(XlsxSink, "finalize") as finalize:
            result = run(service.export("salaries"))

        assert result.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
        assert result.error == "Export timed out"
        finalize.assert_not_called()
        # asyncio.run waits for the writer thread, which has released its buffer by now
        assert pool.idle_count == 1

    def test_unexpected_error_becomes_generic_server_error(self):
        service = ExportService(StubSource(error=RuntimeError("boom")))

        result = run(service.export("salaries"))

        assert result.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
        assert result.error == "Internal server error"

    def test_projection_error_aborts_export(self):
        records = [
            Salary(employee_id=1, amount=1.0, from_date="2020-01-01", to_date="2020-02-01"),
            {"employee_id": 2},
        ]
        pool = BufferPool(max_idle=1)
        service = ExportService(StubSource(records=records), buffer_pool=pool)

        result = run(service.export("salaries"))

        assert result.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
        assert result.error == "Error generating rows"
        assert pool.idle_count == 1

    def test_buffer_is_returned_after_success(self):
        pool = BufferPool(max_idle=1)
        service = ExportService(StubSource(), buffer_pool=pool)

        run(service.export("titles"))

        assert pool.idle_count == 1


class TestExportPayload:
    """
    Tests for the ExportPayload class.
    """

    def test_chunks_cover_whole_content(self):
        payload = ExportPayload(filename="x.xlsx", content=b"abcdefghij", row_count=0)

        chunks = list(payload.iter_chunks(chunk_size=4))

        assert chunks == [b"abcd", b"efgh", b"ij"]


class TestLogContext:
    """
    Tests for the LogContext context manager.
    """

    def test_logs_start_and_completion(self, caplog):
        with caplog.at_level(logging.INFO, logger="export_service"):
            with LogContext("record fetch", request_id="abc12345", dataset="salaries"):
                pass

        messages = [record.getMessage() for record in caplog.records]
        assert messages[0] == "Starting record fetch"
        assert messages[1].startswith("Completed record fetch in ")
        assert caplog.records[1].request_id == "abc12345"
        assert caplog.records[1].dataset == "salaries"

    def test_logs_failure_with_duration(self, caplog):
        with caplog.at_level(logging.INFO, logger="export_service"):
            with pytest.raises(ValueError):
                with LogContext("workbook generation"):
                    raise ValueError("bad row")

        failure = caplog.records[-1]
        assert failure.levelno == logging.ERROR
        assert "Failed workbook generation" in failure.getMessage()
        assert "bad row" in failure.getMessage()
        assert failure.duration >= 0

    def test_export_logs_are_emitted_through_module_logger(self):
        service = ExportService(StubSource())

        with patch("export_service.logger") as mock_logger:
            run(service.export("salaries"))

        first_call = mock_logger.info.call_args_list[0]
        assert first_call.args[0] == "Export requested"
        assert first_call.kwargs["extra"]["dataset"] == "salaries"
        assert len(first_call.kwargs["extra"]["request_id"]) == 8
        mock_logger.error.assert_not_called()
