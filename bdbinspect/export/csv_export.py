"""Export retrieval results as CSV."""
from __future__ import annotations

import csv
import io
from typing import Iterable

from bdbinspect.bdb.retrieval import ClassPageResult
from bdbinspect.cache.models import CachedRecordSummary

SUMMARY_COLUMNS = ["rownum", "oid", "class_name", "field_count", "compressed_size", "decompressed_size"]


def export_class_csv(result: ClassPageResult) -> str:
    """One row per record: oid, class_name, then every column of the page."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["oid", "class_name", *result.columns])

    for rec in result.records:
        values = {f.name: f.decoded for f in rec.fields}
        writer.writerow([
            rec.oid_hex or "",
            rec.class_name,
            *(values.get(col, "") for col in result.columns),
        ])

    return output.getvalue()


def export_summaries_csv(rows: Iterable[CachedRecordSummary]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(SUMMARY_COLUMNS)
    for row in rows:
        writer.writerow([
            row.rownum, row.oid, row.class_name,
            row.field_count, row.compressed_size, row.decompressed_size,
        ])
    return output.getvalue()
