from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class DownloadPdfResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(default=True, description="Always true for a captured document.")
    pdf: str = Field(description="Base64-encoded PDF bytes.")
    content_type: str = Field(
        default="application/pdf",
        alias="contentType",
        description="MIME type of `pdf`.",
    )
    filename: str = Field(
        description="`{rut}-{issueDate}-{timestamp}-{urlHash}.pdf`, or `pdf-{timestamp}-{urlHash}.pdf`."
    )


class ErrorResponse(BaseModel):
    error: str = Field(description="Short error category.")
    message: str = Field(description="Human-readable detail.")


class ToolErrorResponse(ErrorResponse):
    success: bool = False


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str = Field(description="Current server time, ISO-8601.")


class ApiDescriptionResponse(BaseModel):
    message: str = "PDF Downloader API"
    endpoints: dict[str, str]
