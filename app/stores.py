"""In-memory stores for assessments, alerts, interventions and risk profiles.

Every store guards its table with a lock so it can be shared by the
threads FastAPI runs sync handlers on. Lock acquisition is bounded by a
timeout and surfaces as StorageError.
"""

import functools
import logging
import threading
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from app import config
from app.alerts import LEVEL_RANK
from app.errors import NotFoundError, StorageError, ValidationError
from app.models import (
    Alert,
    Intervention,
    InterventionCreate,
    InterventionUpdate,
    Note,
    RiskAssessment,
    RiskHistoryEntry,
    RiskProfile,
)
from app.risk import compute_assessment
from app.time_utils import day_key, utc_now

logger = logging.getLogger(__name__)


@contextmanager
def acquire(lock, timeout: float, name: str):
    if not lock.acquire(timeout=timeout):
        raise StorageError(f"Timed out waiting for {name} lock")
    try:
        yield
    finally:
        lock.release()


@dataclass
class _CacheEntry:
    assessment: RiskAssessment
    inputs: Dict[str, Any] = field(default_factory=dict)
    computed_at: Optional[datetime] = None


def student_key(student_id: Any) -> str:
    """Normalized store key for a student id.

    Raises:
        ValidationError: if the id is missing or blank
    """
    if student_id is None or not str(student_id).strip():
        raise ValidationError("Student ID is required")
    return str(student_id).strip()


class AssessmentStore:
    """Latest assessment per student, reused while younger than the TTL."""

    def __init__(
        self,
        ttl_seconds: float = config.RISK_CACHE_TTL_SECONDS,
        lock_timeout: float = config.STORE_LOCK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        compute: Callable[..., RiskAssessment] = compute_assessment,
        categories: Optional[Dict[str, dict]] = None,
    ):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.lock_timeout = lock_timeout
        self.clock = clock
        if categories is not None:
            compute = functools.partial(compute, categories=categories)
        self._compute = compute
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        # student -> [lock, callers holding or waiting]; dropped when idle
        self._key_locks: Dict[str, list] = {}

    @contextmanager
    def _student_lock(self, key: str):
        with acquire(self._lock, self.lock_timeout, 'assessment store'):
            slot = self._key_locks.get(key)
            if slot is None:
                slot = self._key_locks[key] = [threading.Lock(), 0]
            slot[1] += 1
        try:
            with acquire(slot[0], self.lock_timeout, f"student {key}"):
                yield
        finally:
            with self._lock:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._key_locks[key]

    def get_or_compute(
        self,
        student_id: Optional[str],
        factor_inputs: Optional[Dict[str, Any]] = None,
        force_reanalysis: bool = False,
    ) -> Tuple[RiskAssessment, bool]:
        """
        Return the cached assessment while fresh, otherwise recompute and store.

        Calls for the same student are serialized so that only one
        computation is in flight per key. When factor_inputs is None the
        last inputs seen for the student are reused.

        Returns:
            Tuple of (assessment, from_cache)
        """
        key = student_key(student_id)

        with self._student_lock(key):
            with acquire(self._lock, self.lock_timeout, 'assessment store'):
                entry = self._entries.get(key)

            now = self.clock()
            if (
                entry is not None
                and not force_reanalysis
                and entry.computed_at is not None
                and now - entry.computed_at < self.ttl
            ):
                return entry.assessment, True

            if factor_inputs is None:
                factor_inputs = dict(entry.inputs) if entry else {}
            assessment = self._compute(key, factor_inputs, now=now)

            with acquire(self._lock, self.lock_timeout, 'assessment store'):
                self._entries[key] = _CacheEntry(assessment, dict(factor_inputs), now)
            return assessment, False

    def invalidate(self, student_id: str) -> bool:
        """Force the next get_or_compute for this student to recompute."""
        key = student_key(student_id)
        with acquire(self._lock, self.lock_timeout, 'assessment store'):
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.computed_at = None
        logger.debug("Cached assessment for student %s invalidated", key)
        return True

    def get(self, student_id: str) -> Optional[RiskAssessment]:
        key = student_key(student_id)
        with acquire(self._lock, self.lock_timeout, 'assessment store'):
            entry = self._entries.get(key)
            return entry.assessment if entry else None

    def all(self) -> List[RiskAssessment]:
        with acquire(self._lock, self.lock_timeout, 'assessment store'):
            return [e.assessment for e in self._entries.values()]

    def count(self) -> int:
        with acquire(self._lock, self.lock_timeout, 'assessment store'):
            return len(self._entries)


class AlertStore:
    """Append-only alert log with a retention cap.

    With dedup on, an alert is dropped when the same student already has an
    alert of the same type on the same UTC day at an equal or higher level.
    """

    def __init__(
        self,
        max_alerts: int = config.ALERT_RETENTION_LIMIT,
        dedup: bool = config.ALERT_DEDUP,
        lock_timeout: float = config.STORE_LOCK_TIMEOUT_SECONDS,
    ):
        self.max_alerts = max_alerts
        self.dedup = dedup
        self.lock_timeout = lock_timeout
        self._alerts: Deque[Alert] = deque()
        # (student, type, day) -> (alert id, level rank)
        self._seen: Dict[Tuple[str, str, str], Tuple[str, int]] = {}
        self._lock = threading.Lock()

    def append(self, alert: Alert) -> bool:
        """Store an alert. Returns False when it was suppressed as a duplicate."""
        key = (alert.student_id, alert.type, day_key(alert.timestamp))
        rank = LEVEL_RANK.get(alert.level, 0)
        with acquire(self._lock, self.lock_timeout, 'alert store'):
            if self.dedup:
                seen = self._seen.get(key)
                if seen is not None and seen[1] >= rank:
                    return False
                self._seen[key] = (alert.id, rank)
            self._alerts.append(alert)
            while len(self._alerts) > self.max_alerts:
                evicted = self._alerts.popleft()
                ekey = (evicted.student_id, evicted.type, day_key(evicted.timestamp))
                if self._seen.get(ekey, (None,))[0] == evicted.id:
                    del self._seen[ekey]
            return True

    def extend(self, alerts: List[Alert]) -> List[Alert]:
        """Append several alerts and return the ones actually stored."""
        return [a for a in alerts if self.append(a)]

    def query(
        self,
        level: Optional[str] = None,
        type: Optional[str] = None,
        student_id: Optional[str] = None,
        limit: Optional[int] = 50,
    ) -> List[Alert]:
        with acquire(self._lock, self.lock_timeout, 'alert store'):
            alerts = list(reversed(self._alerts))
        if level:
            alerts = [a for a in alerts if a.level == level]
        if type:
            alerts = [a for a in alerts if a.type == type]
        if student_id:
            alerts = [a for a in alerts if a.student_id == student_id]
        alerts.sort(key=lambda a: a.timestamp, reverse=True)
        if limit is None:
            return alerts
        return alerts[:max(0, limit)]

    def all(self) -> List[Alert]:
        with acquire(self._lock, self.lock_timeout, 'alert store'):
            return list(self._alerts)

    def count(self) -> int:
        with acquire(self._lock, self.lock_timeout, 'alert store'):
            return len(self._alerts)


class InterventionStore:

    def __init__(
        self,
        lock_timeout: float = config.STORE_LOCK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.lock_timeout = lock_timeout
        self.clock = clock
        self._items: Dict[str, Intervention] = {}
        self._lock = threading.Lock()

    def create(self, data: Union[InterventionCreate, Dict[str, Any]]) -> Intervention:
        if not isinstance(data, InterventionCreate):
            try:
                data = InterventionCreate.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError("Invalid intervention", details=e.errors(include_url=False))

        now = self.clock()
        intervention = Intervention(
            id=f"intervention_{uuid.uuid4().hex[:12]}",
            student_id=data.student_id,
            type=data.type,
            strategy=data.strategy,
            description=data.description,
            priority=data.priority or 'medium',
            assigned_to=data.assigned_to or [],
            timeline=data.timeline or 'short-term',
            created_at=now,
            updated_at=now,
        )
        with acquire(self._lock, self.lock_timeout, 'intervention store'):
            self._items[intervention.id] = intervention
            return intervention.model_copy(deep=True)

    def update(
        self,
        intervention_id: str,
        patch: Union[InterventionUpdate, Dict[str, Any]],
        author: str = 'system',
    ) -> Intervention:
        """
        Apply a partial update.

        progress and status are replaced, notes appends one entry and
        milestones appends every given item. updatedAt always moves.

        Raises:
            NotFoundError: if the intervention does not exist
        """
        if not isinstance(patch, InterventionUpdate):
            try:
                patch = InterventionUpdate.model_validate(patch)
            except PydanticValidationError as e:
                raise ValidationError("Invalid intervention update", details=e.errors(include_url=False))

        with acquire(self._lock, self.lock_timeout, 'intervention store'):
            intervention = self._items.get(intervention_id)
            if intervention is None:
                raise NotFoundError(f"Intervention {intervention_id} not found")

            now = self.clock()
            if patch.progress is not None:
                intervention.progress = patch.progress
            if patch.status:
                intervention.status = patch.status
            if patch.notes:
                intervention.notes.append(Note(timestamp=now, content=patch.notes, author=author))
            if patch.milestones:
                intervention.milestones.extend(patch.milestones)
            intervention.updated_at = now
            return intervention.model_copy(deep=True)

    def get(self, intervention_id: str) -> Optional[Intervention]:
        with acquire(self._lock, self.lock_timeout, 'intervention store'):
            item = self._items.get(intervention_id)
            return item.model_copy(deep=True) if item else None

    def list_all(self) -> List[Intervention]:
        with acquire(self._lock, self.lock_timeout, 'intervention store'):
            return [i.model_copy(deep=True) for i in self._items.values()]

    def list_by_student(self, student_id: str) -> List[Intervention]:
        return [i for i in self.list_all() if i.student_id == student_id]

    def list_by_status(self, status: str) -> List[Intervention]:
        return [i for i in self.list_all() if i.status == status]

    def count(self) -> int:
        with acquire(self._lock, self.lock_timeout, 'intervention store'):
            return len(self._items)


class ProfileStore:
    """Per-student risk profiles with a bounded assessment history."""

    def __init__(
        self,
        history_limit: int = config.RISK_HISTORY_LIMIT,
        lock_timeout: float = config.STORE_LOCK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.history_limit = history_limit
        self.lock_timeout = lock_timeout
        self.clock = clock
        self._profiles: Dict[str, RiskProfile] = {}
        self._history: Dict[str, Deque[RiskHistoryEntry]] = {}
        self._lock = threading.Lock()

    def _get_or_create_locked(self, student_id: str) -> RiskProfile:
        profile = self._profiles.get(student_id)
        if profile is None:
            now = self.clock()
            profile = RiskProfile(student_id=student_id, created_at=now, updated_at=now)
            self._profiles[student_id] = profile
        return profile

    def get_or_create(self, student_id: str) -> RiskProfile:
        with acquire(self._lock, self.lock_timeout, 'profile store'):
            return self._get_or_create_locked(student_id).model_copy()

    def record_assessment(self, assessment: RiskAssessment) -> None:
        entry = RiskHistoryEntry(
            assessment_id=assessment.id,
            timestamp=assessment.timestamp,
            overall_risk=assessment.overall_risk,
            overall_risk_level=assessment.overall_risk_level,
            category_scores=dict(assessment.category_scores),
        )
        with acquire(self._lock, self.lock_timeout, 'profile store'):
            profile = self._get_or_create_locked(assessment.student_id)
            profile.current_risk_level = assessment.overall_risk_level
            profile.updated_at = self.clock()
            history = self._history.setdefault(
                assessment.student_id, deque(maxlen=self.history_limit)
            )
            history.append(entry)

    def record_interventions(self, student_id: str, interventions: List[Intervention]) -> None:
        """Refresh a profile's intervention counters from the student's interventions."""
        with acquire(self._lock, self.lock_timeout, 'profile store'):
            profile = self._get_or_create_locked(student_id)
            profile.intervention_count = len(interventions)
            profile.active_interventions = sum(1 for i in interventions if i.status == 'active')
            if interventions:
                profile.last_intervention_at = max(i.created_at for i in interventions)
            profile.updated_at = self.clock()

    def history(self, student_id: str) -> List[RiskHistoryEntry]:
        with acquire(self._lock, self.lock_timeout, 'profile store'):
            return list(self._history.get(student_id, ()))

    def all_history(self) -> Dict[str, List[RiskHistoryEntry]]:
        with acquire(self._lock, self.lock_timeout, 'profile store'):
            return {sid: list(h) for sid, h in self._history.items()}
