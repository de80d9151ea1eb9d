from dataclasses import dataclass

from config import Settings
from data_sources import RecordSource, create_record_source
from export_service import ExportService
from utils.buffer_pool import BufferPool


@dataclass
class AppContext:
    """Shared resources built once at startup and handed to the HTTP layer."""
    settings: Settings
    source: RecordSource
    export_service: ExportService

    async def aclose(self) -> None:
        await self.source.aclose()


def build_context(settings: Settings) -> AppContext:
    source = create_record_source(settings)
    export_service = ExportService(
        source,
        buffer_pool=BufferPool(max_idle=settings.buffer_pool_size),
        timeout=settings.export_timeout,
        workers=settings.export_workers,
        untagged_policy=settings.untagged_fields,
    )
    return AppContext(settings=settings, source=source, export_service=export_service)
