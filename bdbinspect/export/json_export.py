"""Export retrieval results as JSON."""
from __future__ import annotations

import json
from typing import Iterable

from bdbinspect.bdb.retrieval import ClassPageResult
from bdbinspect.cache.models import CachedRecordSummary


def export_class_json(result: ClassPageResult) -> str:
    """One class page with decoded fields (and annotations, when present)."""
    return json.dumps(result.to_dict(), indent=2)


def export_summaries_json(rows: Iterable[CachedRecordSummary]) -> str:
    return json.dumps([row.to_dict() for row in rows], indent=2)
