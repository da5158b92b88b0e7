"""Run summary aggregation."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from price_harvest.common.fs import write_json
from price_harvest.common.models import PriceRecord, SessionState
from price_harvest.pipeline.fallback import completion_stats
from price_harvest.quality.outliers import quality_report


def session_summary(state: SessionState) -> dict:
    return {
        "session_id": state.session_id,
        "period": state.period,
        "phase": state.phase.value,
        "resumed": state.resumed,
        "total_targets": state.total_targets,
        "processed": len(state.processed_ids),
        "results": state.result_count,
        "errors": state.error_count,
        "errors_by_category": dict(sorted(state.error_counts.items())),
        "outliers_by_severity": dict(sorted(state.outlier_counts.items())),
        "fallback_records": state.fallback_count,
        "skipped_existing": state.skipped_existing,
        "resume_point": {
            "batch_index": state.batch_index,
            "total_batches": state.total_batches,
            "processed_count": len(state.processed_ids),
        },
    }


def write_run_summary(
    data_dir: Path,
    summary: dict,
    records: Iterable[PriceRecord] = (),
    *,
    status: str,
) -> Path:
    records = list(records)
    payload = {
        **summary,
        "status": status,
        "quality": quality_report(records),
        "completion": completion_stats(records),
    }
    name = summary.get("session_id") or f"period-{summary.get('period', 'unknown')[:7]}"
    summary_path = data_dir / "reports" / f"{name}.json"
    write_json(summary_path, payload)
    return summary_path
