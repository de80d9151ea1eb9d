from typing import Generic, TypeVar, Optional, Any, Dict, Union
from http import HTTPStatus

from utils.errors import ExportError

T = TypeVar('T')  # Generic type variable


class Result(Generic[T]):
    """
    A generic result class that represents the outcome of an export.

    The export service never lets an exception escape to the HTTP layer;
    it returns either a successful Result carrying the payload or a failed
    Result carrying a client-safe message and the status code to answer with.

    Attributes:
        success (bool): Indicates if the operation was successful
        data (Optional[T]): The result data (only present when success is True)
        error (Optional[str]): Error message (only present when success is False)
        status_code (HTTPStatus): HTTP status code (default: 200 for success, 400 for failure)
    """
    def __init__(
        self,
        success: bool,
        data: Optional[T] = None,
        error: Optional[str] = None,
        status_code: Optional[Union[int, HTTPStatus]] = None
    ):
        self.success = success
        self.data = data
        self.error = error

        # Set default status code based on success/failure if not provided
        if status_code is None:
            self.status_code = HTTPStatus.OK if success else HTTPStatus.BAD_REQUEST
        else:
            self.status_code = HTTPStatus(status_code)

    @classmethod
    def ok(cls, data: T, status_code: Optional[Union[int, HTTPStatus]] = HTTPStatus.OK) -> "Result[T]":
        """
        Create a successful Result with the provided data.

        Args:
            data (T): The data to be wrapped in the Result
            status_code (Optional[Union[int, HTTPStatus]], optional): HTTP status code. Defaults to 200 OK.

        Returns:
            Result[T]: A successful Result containing the provided data
        """
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def invalid_input(cls, error: str = "Invalid input data") -> "Result[T]":
        """Create a failed Result with BAD_REQUEST status code."""
        return cls(success=False, error=error, status_code=HTTPStatus.BAD_REQUEST)

    @classmethod
    def server_error(cls, error: str = "Internal server error") -> "Result[T]":
        """Create a failed Result with INTERNAL_SERVER_ERROR status code."""
        return cls(success=False, error=error, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

    @classmethod
    def from_error(cls, exc: ExportError) -> "Result[T]":
        """
        Create a failed Result from an export error.

        Only the error's public message is kept; the detailed message stays
        in the server logs.

        Args:
            exc (ExportError): The error raised by the export pipeline

        Returns:
            Result[T]: A failed Result with the error's status code
        """
        return cls(success=False, error=exc.public_message, status_code=exc.status_code)

    def is_success(self) -> bool:
        return self.success

    def is_failure(self) -> bool:
        return not self.success

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert a failed Result to a dictionary suitable for API error responses.

        Successful exports are returned as file downloads, so the data is not
        serialized here; only a row count is reported when available.

        Returns:
            Dict[str, Any]: Dictionary containing status, status_code and error
        """
        response = {
            "success": self.success,
            "status_code": self.status_code.value,
            "status": self.status_code.phrase
        }

        if not self.is_success():
            response["error"] = self.error
        elif hasattr(self.data, "row_count"):
            response["row_count"] = self.data.row_count

        return response

    def __str__(self) -> str:
        status_info = f"{self.status_code.value} {self.status_code.phrase}"
        if self.is_success():
            data_repr = str(self.data)
            # Truncate long data representations
            if len(data_repr) > 100:
                data_repr = f"{data_repr[:97]}..."
            return f"Success ({status_info}): {data_repr}"
        return f"Failure ({status_info}): {self.error}"

    def __repr__(self) -> str:
        return f"Result(success={self.success}, status_code={self.status_code!r}, data={self.data!r}, error={self.error!r})"
