from http import HTTPStatus
from typing import Optional, Sequence


class ExportError(Exception):
    """
    Base class for every failure raised while serving an export.

    Each subclass carries the HTTP status it maps to and a short public
    message. The full message (``str(exc)``) is only ever logged server-side.

    Attributes:
        status_code (HTTPStatus): Status returned to the client
        public_message (str): Message safe to show to the client
    """
    status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    public_message: str = "Internal server error"

    def __init__(self, message: str, public_message: Optional[str] = None):
        super().__init__(message)
        if public_message is not None:
            self.public_message = public_message


class ConfigError(ExportError):
    """Missing or invalid configuration. Fatal at startup."""
    public_message = "Service is misconfigured"


class FetchError(ExportError):
    """The data source was unreachable, the query failed or the upstream answered with an error."""
    public_message = "Error fetching records"


class ExportTimeoutError(FetchError):
    """The request deadline expired while fetching or writing."""
    public_message = "Export timed out"


class SchemaError(ExportError):
    """Malformed record type or field metadata."""
    public_message = "Error preparing export"


class ProjectionError(ExportError):
    """
    A record could not be projected onto its schema.

    Attributes:
        record_index (int): Position of the offending record in the batch
        field_position (int): Column position of the offending field
        path (tuple): Attribute path that failed to resolve
    """
    public_message = "Error generating rows"

    def __init__(self, message: str, record_index: int, field_position: int, path: Sequence[str] = ()):
        super().__init__(f"record {record_index}, field {field_position}: {message}")
        self.record_index = record_index
        self.field_position = field_position
        self.path = tuple(path)


class SerializationError(ExportError):
    """The spreadsheet sink rejected a row or failed to finalize."""
    public_message = "Error writing file"


class ValidationError(ExportError):
    """Missing or invalid request parameter. The message is returned as-is."""
    status_code = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message, public_message=message)
