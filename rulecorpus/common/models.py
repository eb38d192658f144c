# Data models shared by every stage.

from typing import List, Optional

from pydantic import BaseModel


class StageSummary(BaseModel):
    """End-of-run tally for one stage (download, convert)."""
    stage: str
    run_id: str
    ok: int = 0
    failed: int = 0
    report_path: Optional[str] = None
    failures: List[str] = []  # identifiers that failed, in processing order

    def line(self) -> str:
        return f"Summary: {self.ok} ok, {self.failed} fail"
