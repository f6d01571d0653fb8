from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class RecordFailure:
    """
    One record (or whole category) that could not be written.

    record_id is None when the category itself was unusable
    (malformed content, table could not be created).
    """
    category: str
    record_id: Optional[str]
    error: str
    error_type: str = "StorageError"


@dataclass
class SyncResult:
    """
    Synchronizer-to-caller result.

    upserted: records written (inserted or updated)
    failures: records that failed; the batch carried on past them
    warnings: fields skipped because they could not be stored
    tables_created / columns_added / columns_widened: DDL actually issued
    """
    upserted: int = 0
    failures: List[RecordFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    tables_created: int = 0
    columns_added: int = 0
    columns_widened: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed(self) -> int:
        return len(self.failures)

    def merge(self, other: "SyncResult") -> "SyncResult":
        self.upserted += other.upserted
        self.failures.extend(other.failures)
        self.warnings.extend(other.warnings)
        self.categories.extend(c for c in other.categories if c not in self.categories)
        self.tables_created += other.tables_created
        self.columns_added += other.columns_added
        self.columns_widened += other.columns_widened
        return self

    def report_text(self, max_failures: int = 10) -> str:
        lines: List[str] = [
            f"Categories: {', '.join(self.categories) if self.categories else '-'}",
            f"Records upserted: {self.upserted}",
            f"Schema changes: +{self.tables_created} tables, +{self.columns_added} columns, "
            f"{self.columns_widened} widened",
        ]
        if self.warnings:
            lines.append(f"Skipped fields: {len(self.warnings)}")
        if self.failures:
            lines.append(f"Failed records: {len(self.failures)}")
            for f in self.failures[:max_failures]:
                rid = f.record_id if f.record_id is not None else "*"
                lines.append(f"  - {f.category}/{rid}: {f.error_type}: {f.error}")
            if len(self.failures) > max_failures:
                lines.append("  …(truncated)")
        return "\n".join(lines)
