"""Data models for synchronization operations."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from thymer_inbox.models.record import Classification, SyncRecord


class UpsertResult(BaseModel):
    """Outcome of upserting one fetched record.

    ``verb`` only lives here; snapshots never store it.
    """

    model_config = ConfigDict(frozen=True)

    record: SyncRecord = Field(..., description="The freshly fetched record")
    classification: Classification
    verb: str | None = Field(default=None, description="Transition label, None when unchanged")

    @property
    def emits(self) -> bool:
        """Whether this outcome should reach the consumer."""
        return self.classification is not Classification.UNCHANGED


class SyncReport(BaseModel):
    """Report of one synchronization cycle for one source."""

    source: str = Field(..., description="Source that was synced")
    resync: bool = Field(default=False, description="Store was wiped before the cycle")
    created: int = Field(default=0, ge=0, description="Records seen for the first time")
    updated: int = Field(default=0, ge=0, description="Records whose tracked state changed")
    cancelled: int = Field(default=0, ge=0, description="Records newly marked as retracted")
    unchanged: int = Field(default=0, ge=0, description="Records with nothing to announce")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Sync duration in seconds")
    start_time: datetime = Field(..., description="Sync start timestamp")
    end_time: datetime = Field(..., description="Sync end timestamp")
    errors: list[str] = Field(
        default_factory=list, description="List of errors encountered during sync"
    )
    changes: list[UpsertResult] = Field(
        default_factory=list, description="Every non-unchanged outcome, in upsert order"
    )

    @property
    def total_changes(self) -> int:
        """Get total number of changes to announce."""
        return self.created + self.updated + self.cancelled

    @property
    def success(self) -> bool:
        """Check if sync completed without errors."""
        return len(self.errors) == 0

    def record(self, result: UpsertResult) -> None:
        """Count one upsert outcome."""
        if result.classification is Classification.CREATED:
            self.created += 1
        elif result.classification is Classification.UPDATED:
            self.updated += 1
        elif result.classification is Classification.CANCELLED:
            self.cancelled += 1
        else:
            self.unchanged += 1
            return
        self.changes.append(result)
