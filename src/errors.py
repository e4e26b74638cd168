"""Structured reporting for records that could not be normalized cleanly."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class RecordIssue(BaseModel):
    """A single problem found in a raw record."""

    stage: str
    identity: str = ""
    issue_type: str = "unknown"
    message: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)


class NormalizationReport(BaseModel):
    """Summary of one normalization pass over raw API records.

    Issues never stop normalization. Malformed records are skipped,
    incomplete ones are kept, and both are listed here so callers can
    surface them.
    """

    started_at: datetime = Field(default_factory=datetime.now)
    records_seen: dict[str, int] = Field(default_factory=dict)
    issues: list[RecordIssue] = Field(default_factory=list)

    def add_issue(
        self,
        stage: str,
        message: str,
        *,
        identity: str = "",
        issue_type: str = "unknown",
    ) -> None:
        """Record a problem with one raw record."""
        self.issues.append(
            RecordIssue(
                stage=stage,
                identity=identity,
                issue_type=issue_type,
                message=message,
            )
        )

    def count_record(self, stage: str) -> None:
        self.records_seen[stage] = self.records_seen.get(stage, 0) + 1

    @property
    def clean(self) -> bool:
        """True if every record normalized without issues."""
        return not self.issues

    @property
    def issue_count(self) -> int:
        return len(self.issues)

    def summary_text(self) -> str:
        """Human-readable summary of the normalization pass."""
        status = "clean" if self.clean else "with issues"
        lines = [f"Normalization {status}"]

        if self.records_seen:
            parts = [f"{k}: {v}" for k, v in self.records_seen.items()]
            lines.append(f"Records: {', '.join(parts)}")

        if self.issues:
            lines.append(f"Issues: {len(self.issues)}")
            for issue in self.issues[:5]:
                where = f" ({issue.identity})" if issue.identity else ""
                lines.append(f"  [{issue.issue_type}] {issue.stage}{where}: {issue.message}")
            if len(self.issues) > 5:
                lines.append(f"  ... and {len(self.issues) - 5} more")

        return "\n".join(lines)
