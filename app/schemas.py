"""Pydantic models for API input/output.

Field names follow the existing frontend payloads (camelCase where the
browser client sends camelCase).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════ EMAIL ═══════════════

class SendEmailRequest(BaseModel):
    """Accepts a single recipient or a list of recipients."""

    model_config = ConfigDict(populate_by_name=True)

    to: str | list[str] = ""
    subject: str = ""
    html: str = ""
    text: str | None = None
    from_email: str | None = Field(default=None, alias="fromEmail")
    from_name: str | None = Field(default=None, alias="fromName")

    @property
    def recipients(self) -> list[str]:
        items = self.to if isinstance(self.to, list) else [self.to]
        return [r.strip() for r in items if r and r.strip()]

    def is_complete(self) -> bool:
        return bool(self.recipients and self.subject and self.html)


# ═══════════════ PASSWORD RESET ═══════════════

class PasswordResetRequest(BaseModel):
    email: str = ""


class ConfirmPasswordResetRequest(BaseModel):
    token: str = ""
    password: str = ""


# ═══════════════ PAYMENTS ═══════════════

class VerifyPaymentRequest(BaseModel):
    paymentId: str | int = ""
    userId: str = ""


class VerifyPaymentResponse(BaseModel):
    success: bool = False
    newBalance: float | None = None
    message: str | None = None
    error: str | None = None


# ═══════════════ CACHE ═══════════════

class CacheInvalidateRequest(BaseModel):
    """Omit table to clear every cached query."""

    table: str | None = None


# ═══════════════ BULK DATA ═══════════════

class BulkImportRequest(BaseModel):
    """Rows as JSON objects, or a CSV document with a header line."""

    model_config = ConfigDict(populate_by_name=True)

    rows: list[dict[str, Any]] = Field(default_factory=list)
    csv: str | None = None
    validate_rows: bool = Field(default=True, alias="validate")
    transform: bool = True
    batch_size: int | None = Field(default=None, alias="batchSize")


class BulkInsertResult(BaseModel):
    success: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    processed: int = 0


class BulkImportSummary(BaseModel):
    total: int = 0
    valid: int = 0
    inserted: int = 0
    errors: int = 0
    validationErrors: int = 0


class BulkImportReport(BaseModel):
    results: BulkInsertResult = Field(default_factory=BulkInsertResult)
    validationErrors: list[dict[str, Any]] = Field(default_factory=list)
    summary: BulkImportSummary = Field(default_factory=BulkImportSummary)
