"""Store interface that both the embedded and the hosted backends implement."""

from datetime import datetime
from typing import Dict, List, Optional, Protocol, runtime_checkable

from .models import RollingBaseline, SubmissionRecord, SuiteRun, TestCaseRecord


@runtime_checkable
class RunStore(Protocol):
    """Append-only run history plus point lookups and rolling-window aggregates."""

    def insert_run(self, run: SuiteRun) -> str:
        """Persist a run, returning its id."""

    def insert_test_case(self, case: TestCaseRecord) -> str:
        """Persist one prompt x replicate row, returning its id."""

    def get_recent_runs(self, limit: int = 100) -> List[SuiteRun]:
        """Most recent runs first."""

    def get_run_by_id(self, run_id: str) -> Optional[SuiteRun]:
        ...

    def get_test_cases_by_run_id(self, run_id: str) -> List[TestCaseRecord]:
        ...

    def delete_run(self, run_id: str) -> bool:
        """Remove a run together with its test cases."""

    def get_rolling_baseline(self, window_days: int = 7, now: Optional[datetime] = None) -> RollingBaseline:
        """Mean of each numeric run field over the trailing window, zero-filled."""

    def get_config(self, key: str) -> Optional[str]:
        ...

    def set_config(self, key: str, value: str) -> None:
        ...

    def get_config_values(self) -> Dict[str, str]:
        ...

    def insert_submission(self, submission: SubmissionRecord) -> str:
        """Persist a submission and its details atomically."""

    def get_submission(self, submission_id: str) -> Optional[SubmissionRecord]:
        ...

    def get_submissions(
        self, since: datetime, until: Optional[datetime] = None, region: Optional[str] = None
    ) -> List[SubmissionRecord]:
        """Submissions in ``[since, until)``, oldest first, without their details."""

    def get_submission_scores(self, since: datetime, region: Optional[str] = None) -> List[float]:
        """Normalized 0-100 scores of submissions made at or after ``since``."""

    def close(self) -> None:
        ...
