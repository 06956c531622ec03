"""Pydantic schemas for Quick Track bulk approval."""

from uuid import UUID

from pydantic import BaseModel, Field

from .bulk_pass import BulkPassReport


class BulkPassRequest(BaseModel):
    """Request to approve a set of pending progress records."""

    progress_ids: list[UUID] = Field(..., description="Progress records to approve")


class BulkPassFailureResponse(BaseModel):
    """One record that could not be approved."""

    progress_id: UUID
    error_code: str
    reason: str


class BulkPassReportResponse(BaseModel):
    """Terminal report of a bulk pass run."""

    run_id: UUID
    status: str
    total_requested: int
    processed: int
    succeeded: int
    succeeded_ids: list[UUID]
    failed: list[BulkPassFailureResponse]
    cancelled: bool
    remaining_ids: list[UUID]

    @classmethod
    def from_report(cls, report: BulkPassReport) -> "BulkPassReportResponse":
        return cls(
            run_id=report.run_id,
            status=report.status,
            total_requested=report.total_requested,
            processed=report.processed,
            succeeded=report.succeeded,
            succeeded_ids=list(report.succeeded_ids),
            failed=[
                BulkPassFailureResponse(
                    progress_id=f.progress_id,
                    error_code=f.error_code,
                    reason=f.reason,
                )
                for f in report.failed
            ],
            cancelled=report.cancelled,
            remaining_ids=list(report.remaining_ids),
        )
