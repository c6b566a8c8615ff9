"""Run state and summary models for the autopost pipeline."""

from enum import Enum

from pydantic import BaseModel, Field

from ..posting.publisher import PublishResult, PublishStatus


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    BUILDING = "building"
    CAPTURING = "capturing"
    POSTING = "posting"
    DONE = "done"


class RunSummary(BaseModel):
    """Counters and per-receipt outcomes for one autopost run.

    Attributes:
        games_found: Finished games across all fetched dates
        receipts_built: Receipts built successfully
        build_failures: Games that could not be turned into a receipt
        captured: Receipt images captured
        capture_aborted: A capture timeout cut the capture loop short
        auth_aborted: An authorization failure stopped the posting loop
        results: Publish outcome per receipt, in posting order
    """

    games_found: int = Field(0, ge=0)
    receipts_built: int = Field(0, ge=0)
    build_failures: int = Field(0, ge=0)
    captured: int = Field(0, ge=0)
    capture_aborted: bool = False
    auth_aborted: bool = False
    results: list[PublishResult] = Field(default_factory=list)

    def _count(self, status: PublishStatus) -> int:
        return sum(1 for result in self.results if result.status == status)

    @property
    def posted(self) -> int:
        return self._count(PublishStatus.POSTED)

    @property
    def skipped(self) -> int:
        return self._count(PublishStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(PublishStatus.FAILED)

    @property
    def attempted(self) -> int:
        """Receipts handed to the publisher (posted or failed)."""
        return self.posted + self.failed

    @property
    def exit_code(self) -> int:
        """0 unless at least one post was attempted and none succeeded."""
        return 1 if self.attempted > 0 and self.posted == 0 else 0

    def counters(self) -> dict[str, int]:
        return {
            "games_found": self.games_found,
            "receipts_built": self.receipts_built,
            "build_failures": self.build_failures,
            "captured": self.captured,
            "attempted": self.attempted,
            "posted": self.posted,
            "skipped": self.skipped,
            "failed": self.failed,
        }
