"""Pydantic models for AzCopy's `--output-type json` stream.

Every stdout line is an envelope; `MessageContent` is itself JSON for
`Init`, `Progress` and `EndOfJob` messages. Numeric fields arrive as strings.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _AzCopyModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class OutputLine(_AzCopyModel):
    time_stamp: str | None = Field(default=None, alias="TimeStamp")
    message_type: str = Field(..., alias="MessageType")
    message_content: str = Field(default="", alias="MessageContent")


class InitMessage(_AzCopyModel):
    log_file_location: str | None = Field(default=None, alias="LogFileLocation")
    job_id: str | None = Field(default=None, alias="JobID")


class FailedTransfer(_AzCopyModel):
    src: str = Field(default="", alias="Src")
    dst: str = Field(default="", alias="Dst")
    transfer_status: str = Field(default="Failed", alias="TransferStatus")
    error_code: int = Field(default=0, alias="ErrorCode")

    def reason(self) -> str:
        if self.error_code:
            return f"{self.transfer_status} (HTTP {self.error_code})"
        return self.transfer_status


class ProgressMessage(_AzCopyModel):
    job_status: str = Field(default="InProgress", alias="JobStatus")
    error_msg: str = Field(default="", alias="ErrorMsg")
    total_transfers: int = Field(default=0, alias="TotalTransfers")
    transfers_completed: int = Field(default=0, alias="TransfersCompleted")
    transfers_failed: int = Field(default=0, alias="TransfersFailed")
    transfers_skipped: int = Field(default=0, alias="TransfersSkipped")
    total_bytes_transferred: int = Field(default=0, alias="TotalBytesTransferred")
    total_bytes_expected: int = Field(default=0, alias="TotalBytesExpected")
    percent_complete: float = Field(default=0.0, alias="PercentComplete")
    failed_transfers: list[FailedTransfer] = Field(default_factory=list, alias="FailedTransfers")

    @field_validator(
        "total_transfers",
        "transfers_completed",
        "transfers_failed",
        "transfers_skipped",
        "total_bytes_transferred",
        "total_bytes_expected",
        mode="before",
    )
    @classmethod
    def _blank_is_zero(cls, value: object) -> object:
        return 0 if value in (None, "") else value

    @field_validator("percent_complete", mode="before")
    @classmethod
    def _blank_percent(cls, value: object) -> object:
        return 0.0 if value in (None, "") else value

    @field_validator("failed_transfers", mode="before")
    @classmethod
    def _null_is_empty(cls, value: object) -> object:
        return value or []

    @property
    def finished(self) -> bool:
        return self.job_status not in ("InProgress", "")
