import logging
from typing import Optional

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse

from .display import view_kind
from .formats import file_extension, is_supported
from .models import HealthResponse, ParseError, UploadResponse
from .normalize import normalize_upload
from .rules import MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

app = FastAPI(
    title="dataviewer",
    description="Normalize uploaded JSON, XML, CSV and Excel files for display",
    version="0.1.0",
)


class UploadRejected(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _envelope(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"parsedData": ParseError(message=message).payload()},
    )


@app.exception_handler(UploadRejected)
async def upload_rejected(request: Request, exc: UploadRejected):
    logger.info("upload rejected (%d): %s", exc.status_code, exc.message)
    return _envelope(exc.status_code, exc.message)


@app.exception_handler(Exception)
async def upload_failed(request: Request, exc: Exception):
    logger.exception("unhandled error while processing upload")
    return _envelope(500, f"Error processing upload: {exc}")


@app.get("/health", response_model=HealthResponse)
def health():
    return {"ok": True}


@app.post("/api/upload", response_model=UploadResponse)
async def upload(request: Request, file: Optional[UploadFile] = File(None)):
    if "multipart/form-data" not in request.headers.get("content-type", ""):
        raise UploadRejected(400, "Content type must be multipart/form-data")
    if file is None:
        raise UploadRejected(400, "No file uploaded")
    if not is_supported(file.filename):
        raise UploadRejected(
            400, "Unsupported file format. Please upload JSON, XML, CSV, or Excel files."
        )

    raw = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(raw) > MAX_UPLOAD_BYTES:
        raise UploadRejected(413, f"File exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)} MB upload limit")

    result = normalize_upload(file.filename, raw)
    return UploadResponse(
        file_type=file_extension(file.filename),
        view=view_kind(result),
        parsed_data=result.payload(),
    )
