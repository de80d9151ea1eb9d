from fastapi import FastAPI, Query, Request, status
import os
import sys
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware

from app_context import AppContext, build_context
from config import load_settings
from utils.errors import ConfigError
from utils.result import Result


# Create logs directory if it doesn't exist
log_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs")
os.makedirs(log_dir, exist_ok=True)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Add file handler to write logs to file
log_file_path = os.path.join(log_dir, f"app_{datetime.now().strftime('%Y%m%d')}.log")
file_handler = logging.FileHandler(log_file_path)
file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
logging.getLogger().addHandler(file_handler)


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        context: Prebuilt shared resources. When omitted, settings are loaded
            from the environment at startup and a ConfigError aborts startup.

    Returns:
        FastAPI: The configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_context = context
        if app_context is None:
            app_context = build_context(load_settings())
        app.state.context = app_context
        logger.info(f"Export service ready, record source: {app_context.source.name}")
        try:
            yield
        finally:
            await app_context.aclose()
            logger.info("Record source closed")

    app = FastAPI(
        title="Spreadsheet Export API",
        description="API for exporting database records as Excel files",
        version="1.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Invalid request parameters: {exc.errors()}")
        result = Result.invalid_input("Invalid request parameters")
        return JSONResponse(status_code=result.status_code.value, content=result.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception on {request.url.path}")
        result = Result.server_error()
        return JSONResponse(status_code=result.status_code.value, content=result.to_dict())

    @app.get("/health", tags=["Service"])
    async def health(request: Request):
        """Report that the service is up and which record source it reads from."""
        return {"status": "ok", "record_source": request.app.state.context.source.name}

    @app.get("/download", tags=["Excel Export"])
    async def download(
        request: Request,
        dataset: Optional[str] = Query(None, description="Name of the dataset to export"),
        filter_id: Optional[str] = Query(None, description="Optional identifier to filter records by")
    ):
        """
        Download a dataset as an Excel workbook.

        The workbook is generated completely before the response starts, so
        a failing export is always answered with an error status and never
        with a truncated file.

        Returns:
            StreamingResponse: The .xlsx attachment, or a JSON error with:
                - success: False
                - status_code / status: HTTP status of the failure
                - error: Short human-readable message
        """
        export_service = request.app.state.context.export_service
        result = await export_service.export(dataset, filter_id)

        if not result.is_success():
            return JSONResponse(status_code=result.status_code.value, content=result.to_dict())

        payload = result.data
        return StreamingResponse(
            payload.iter_chunks(),
            status_code=status.HTTP_200_OK,
            media_type=payload.media_type,
            headers={
                "Content-Disposition": f"attachment; filename={payload.filename}",
                "Content-Length": str(len(payload.content)),
            }
        )

    return app


app = create_app()


# Run the application if executed directly
if __name__ == "__main__":
    import uvicorn
    try:
        load_settings()
    except ConfigError as e:
        logger.critical(f"Refusing to start: {e}")
        sys.exit(1)
    logger.info("Starting Spreadsheet Export API in development mode.")
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
