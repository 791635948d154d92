"""
Risk flag reconciler

Merges candidate risks into the flag store keeping at most one active,
unresolved flag per (student, risk type):

- no active flag: sweep strays, create a flag, alert on HIGH/CRITICAL
- active flag: overwrite it in place, sweep duplicates, alert only on a
  strict severity increase to HIGH/CRITICAL

Concurrent runs in one process serialize on a per-(student, type) lock;
the active-flag lookup also takes a row lock (SELECT ... FOR UPDATE) so
runs in other processes wait on the same row. The sweep recovers from
whatever slips through both.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..database.models import RiskFlagDB
from ..database.repositories import RiskFlagRepository
from ..models.risk import CandidateRisk, RiskType, Severity, dump_evidence
from ..notifications.admin import AdminNotifier
from ..notifications.guardian import GuardianNotifier
from .aggregator import RiskLevelAggregator
from .clock import Clock
from .metrics import risk_flags_auto_resolved_total, risk_flags_created_total, risk_flags_updated_total

logger = logging.getLogger(__name__)

REPLACED_BY_UPDATED_NOTE = "Auto-resolved: Replaced by updated risk flag of the same type"
REPLACED_BY_NEW_NOTE = "Auto-resolved: Replaced by new risk flag of the same type"


class KeyedLocks:
    """
    One threading.Lock per key. An entry lives only while some thread
    holds or waits on it, so the registry stays as small as the set of
    keys in flight.
    """

    def __init__(self):
        self._locks: Dict[Tuple[str, str], List[Any]] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Tuple[str, str]) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


_flag_locks = KeyedLocks()


@dataclass
class ReconcileResult:
    risks_detected: int = 0
    created: List[RiskFlagDB] = field(default_factory=list)
    updated: List[RiskFlagDB] = field(default_factory=list)
    risk_level: Optional[Severity] = None

    @property
    def flags_created(self) -> int:
        return len(self.created)

    @property
    def flags_updated(self) -> int:
        return len(self.updated)

    @property
    def flags(self) -> List[RiskFlagDB]:
        return self.created + self.updated


def select_per_type(candidates: Sequence[CandidateRisk]) -> Dict[RiskType, CandidateRisk]:
    """
    Most severe candidate of each type. Ties keep the first seen; types
    keep first-seen order.
    """
    chosen: Dict[RiskType, CandidateRisk] = {}
    for candidate in candidates:
        current = chosen.get(candidate.type)
        if current is None or candidate.severity.rank > current.severity.rank:
            chosen[candidate.type] = candidate
    return chosen


class RiskFlagReconciler:
    """Applies candidate risks of one detection pass to a student's flags"""

    def __init__(
        self,
        db_session: Session,
        clock: Clock,
        admin_notifier: AdminNotifier,
        guardian_notifier: GuardianNotifier,
        aggregator: RiskLevelAggregator,
        locks: Optional[KeyedLocks] = None
    ):
        self.clock = clock
        self.flags = RiskFlagRepository(db_session)
        self.admin_notifier = admin_notifier
        self.guardian_notifier = guardian_notifier
        self.aggregator = aggregator
        self.locks = locks if locks is not None else _flag_locks

    def reconcile(
        self,
        student_id: str,
        school_id: str,
        actor_id: Optional[str],
        candidates: Sequence[CandidateRisk],
        auto_generated: bool = True
    ) -> ReconcileResult:
        """
        Args:
            student_id: Student the candidates belong to
            school_id: Student's school
            actor_id: User or job that triggered detection
            candidates: Candidate risks of one pass, any number per type
            auto_generated: False for flags raised manually by staff

        Returns:
            ReconcileResult with the created and updated flags
        """
        result = ReconcileResult(risks_detected=len(candidates))

        for risk_type, candidate in select_per_type(candidates).items():
            with self.locks.hold((student_id, risk_type.value)):
                existing = self.flags.find_active(student_id, risk_type, lock=True)
                if existing is None:
                    result.created.append(
                        self._create(student_id, school_id, actor_id, candidate, auto_generated)
                    )
                else:
                    result.updated.append(self._update(existing, actor_id, candidate))

        if result.created or result.updated:
            result.risk_level = self.aggregator.recompute(student_id)

        return result

    def _create(
        self,
        student_id: str,
        school_id: str,
        actor_id: Optional[str],
        candidate: CandidateRisk,
        auto_generated: bool
    ) -> RiskFlagDB:
        now = self.clock.now()
        swept = self.flags.bulk_resolve_active(
            student_id, candidate.type, actor_id, REPLACED_BY_NEW_NOTE, now=now
        )
        self._record_sweep(student_id, candidate.type, swept)

        flag = self.flags.create(
            student_id=student_id,
            school_id=school_id,
            risk_type=candidate.type,
            severity=candidate.severity,
            title=candidate.title,
            description=candidate.description,
            data=dump_evidence(candidate.data),
            auto_generated=auto_generated,
            created_by=actor_id,
            now=now,
        )
        risk_flags_created_total.labels(risk_type=flag.type, severity=flag.severity).inc()
        logger.info("Risk flag created", extra={
            "student_id": student_id,
            "flag_id": flag.id,
            "risk_type": flag.type,
            "severity": flag.severity,
        })

        if candidate.severity.is_alerting:
            details = f"{candidate.title}. {candidate.description}"
            self.admin_notifier.notify_student_risk(
                student_id,
                candidate.severity,
                f"New {candidate.severity.value} risk flag detected: {details}",
                candidate.type,
            )
            self.guardian_notifier.notify_parents_of_risk(student_id, candidate.severity, details)

        return flag

    def _update(self, existing: RiskFlagDB, actor_id: Optional[str], candidate: CandidateRisk) -> RiskFlagDB:
        now = self.clock.now()
        previous = Severity(existing.severity)
        flag = self.flags.update(
            existing.id,
            {
                "title": candidate.title,
                "description": candidate.description,
                "severity": candidate.severity,
                "data": dump_evidence(candidate.data),
            },
            updated_by=actor_id,
            now=now,
        )

        swept = self.flags.bulk_resolve_active(
            flag.student_id, candidate.type, actor_id, REPLACED_BY_UPDATED_NOTE,
            exclude_id=flag.id, now=now,
        )
        self._record_sweep(flag.student_id, candidate.type, swept)

        risk_flags_updated_total.labels(risk_type=flag.type, severity=flag.severity).inc()
        logger.info("Risk flag updated", extra={
            "student_id": flag.student_id,
            "flag_id": flag.id,
            "risk_type": flag.type,
            "previous_severity": previous.value,
            "severity": flag.severity,
        })

        if candidate.severity.rank > previous.rank and candidate.severity.is_alerting:
            details = f"{candidate.title}. {candidate.description}"
            self.admin_notifier.notify_student_risk(
                flag.student_id,
                candidate.severity,
                f"Risk flag severity increased: {details}",
                candidate.type,
            )
            self.guardian_notifier.notify_parents_of_risk(flag.student_id, candidate.severity, details)

        return flag

    def _record_sweep(self, student_id: str, risk_type: RiskType, swept: int) -> None:
        if not swept:
            return
        risk_flags_auto_resolved_total.labels(risk_type=risk_type.value).inc(swept)
        logger.warning(
            "Duplicate active risk flags auto-resolved",
            extra={"student_id": student_id, "risk_type": risk_type.value, "count": swept}
        )
