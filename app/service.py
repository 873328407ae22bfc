"""Risk detection service: ties scoring, stores, alerts and recommendations together."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from app import config
from app.alerts import evaluate_for_alerts
from app.errors import RiskServiceError, ValidationError
from app.models import (
    Alert,
    BatchCriteria,
    Intervention,
    InterventionCreate,
    InterventionUpdate,
    RiskAssessment,
)
from app.recommendations import next_steps, preventive_actions, recommend, urgency
from app.reports import count_by, daily_trends
from app.risk import get_risk_level
from app.stores import AlertStore, AssessmentStore, InterventionStore, ProfileStore, student_key
from app.time_utils import parse_window, utc_now

logger = logging.getLogger(__name__)


class RiskService:
    """Entry points behind the HTTP routes. Stores are injected so tests can isolate state."""

    def __init__(
        self,
        assessments: Optional[AssessmentStore] = None,
        alerts: Optional[AlertStore] = None,
        interventions: Optional[InterventionStore] = None,
        profiles: Optional[ProfileStore] = None,
        categories: Optional[Dict[str, dict]] = None,
        strategies: Optional[Dict[str, List[str]]] = None,
        batch_workers: int = config.BATCH_MAX_WORKERS,
        batch_max_size: int = config.BATCH_MAX_SIZE,
        clock=utc_now,
    ):
        self.categories = categories if categories is not None else config.RISK_CATEGORIES
        self.strategies = strategies if strategies is not None else config.INTERVENTION_STRATEGIES
        # The default store scores with the same table alerts and recommendations read
        self.assessments = assessments or AssessmentStore(categories=self.categories)
        self.alerts = alerts or AlertStore()
        self.interventions = interventions or InterventionStore()
        self.profiles = profiles or ProfileStore()
        self.batch_workers = max(1, batch_workers)
        self.batch_max_size = batch_max_size
        self.clock = clock
        self.started = time.monotonic()

    # Analysis

    def _run_analysis(
        self,
        student_id: Any,
        factor_inputs: Optional[Dict[str, Any]],
        force_reanalysis: bool,
    ) -> Tuple[RiskAssessment, bool, List[Alert]]:
        assessment, from_cache = self.assessments.get_or_compute(
            student_id, factor_inputs, force_reanalysis
        )
        if from_cache:
            return assessment, True, []
        self.profiles.record_assessment(assessment)
        created = self.alerts.extend(evaluate_for_alerts(assessment, self.categories))
        return assessment, False, created

    def analyze(
        self,
        student_id: Optional[str],
        data: Optional[Dict[str, Any]] = None,
        force_reanalysis: bool = False,
    ) -> Dict[str, Any]:
        """Analyze one student and return assessment, new alerts and suggestions."""
        logger.info("Risk analysis requested for student %s (force=%s)", student_id, force_reanalysis)
        assessment, from_cache, created = self._run_analysis(student_id, data, force_reanalysis)

        return {
            'analysis': assessment.to_json(),
            'alerts': [a.to_json() for a in created],
            'interventions': recommend(assessment, self.categories, self.strategies),
            'recommendations': {
                'priority': assessment.overall_risk_level,
                'urgency': urgency(assessment),
                'nextSteps': next_steps(assessment),
            },
            'fromCache': from_cache,
        }

    def analyze_batch(
        self,
        student_ids: Optional[List[Any]],
        data: Optional[Dict[str, Any]] = None,
        criteria: Union[BatchCriteria, Dict[str, Any], None] = None,
    ) -> Dict[str, Any]:
        """
        Analyze many students independently on a bounded worker pool.

        A failure for one student is reported in that student's entry and
        never aborts the others.
        """
        if not isinstance(student_ids, list) or not student_ids:
            raise ValidationError("studentIds must be a non-empty list")
        if len(student_ids) > self.batch_max_size:
            raise ValidationError(f"Batch too large. Maximum size: {self.batch_max_size}")

        data = data or {}
        if not isinstance(criteria, BatchCriteria):
            try:
                criteria = BatchCriteria.model_validate(criteria or {})
            except PydanticValidationError as e:
                raise ValidationError("Invalid batch criteria", details=e.errors(include_url=False))
        force = criteria.force_reanalysis

        def analyze_one(student_id: Any) -> Dict[str, Any]:
            try:
                if not isinstance(student_id, str) or not student_id.strip():
                    raise ValidationError("Student ID is required")
                inputs = data.get(student_id)
                assessment, from_cache, created = self._run_analysis(student_id, inputs, force)
                return {
                    'studentId': student_id,
                    'success': True,
                    'analysis': assessment.to_json(),
                    'fromCache': from_cache,
                    'alerts': [a.to_json() for a in created],
                }
            except RiskServiceError as e:
                logger.warning("Batch analysis failed for student %s: %s", student_id, e.message)
                result = {'studentId': student_id, 'success': False, 'error': e.message}
                if e.details is not None:
                    result['details'] = e.details
                return result
            except Exception:
                logger.exception("Unexpected error analyzing student %s in batch", student_id)
                return {'studentId': student_id, 'success': False, 'error': 'Internal error'}

        logger.info("Batch analysis of %d students", len(student_ids))
        workers = min(self.batch_workers, len(student_ids))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(analyze_one, student_ids))

        alerts: List[dict] = []
        for r in results:
            alerts.extend(r.pop('alerts', []))

        succeeded = [r for r in results if r['success']]
        statistics = {
            'total': len(student_ids),
            'successful': len(succeeded),
            'failed': len(results) - len(succeeded),
            'highRisk': sum(1 for r in succeeded if r['analysis']['overallRisk'] > 0.7),
            'criticalRisk': sum(1 for r in succeeded if r['analysis']['overallRisk'] > 0.85),
            'alertsGenerated': len(alerts),
        }
        priority = sorted(
            (r for r in succeeded if r['analysis']['overallRisk'] > 0.6),
            key=lambda r: -r['analysis']['overallRisk'],
        )[:10]

        return {
            'results': results,
            'alerts': alerts,
            'statistics': statistics,
            'summary': {
                'riskDistribution': self._distribution(r['analysis']['overallRiskLevel'] for r in succeeded),
                'priorityStudents': [
                    {'studentId': r['studentId'], 'risk': r['analysis']['overallRisk']} for r in priority
                ],
            },
        }

    @staticmethod
    def _distribution(levels) -> Dict[str, int]:
        distribution = {level: 0 for level in config.RISK_LEVELS}
        for level in levels:
            distribution[level] = distribution.get(level, 0) + 1
        return distribution

    # Alerts

    @staticmethod
    def alert_statistics(alerts: List[Alert], now: datetime) -> Dict[str, Any]:
        by_level = {level: 0 for level in config.ALERT_LEVELS}
        by_level.update(count_by(alerts, 'level'))
        return {
            'total': len(alerts),
            'byLevel': by_level,
            'byType': count_by(alerts, 'type'),
            'recentCount': sum(1 for a in alerts if (now - a.timestamp).total_seconds() < 24 * 3600),
        }

    def query_alerts(
        self,
        level: Optional[str] = None,
        type: Optional[str] = None,
        student_id: Optional[str] = None,
        limit: int = 50,
    ) -> Dict[str, Any]:
        if level and level not in config.ALERT_LEVELS:
            raise ValidationError(f"Unknown alert level '{level}'", details={'allowed': config.ALERT_LEVELS})
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        if student_id is not None:
            student_id = student_key(student_id)

        matched = self.alerts.query(level=level, type=type, student_id=student_id, limit=None)
        page = matched[:limit]
        return {
            'alerts': [a.to_json() for a in page],
            # Counted over every alert matching the filters, not just this page
            'statistics': self.alert_statistics(matched, self.clock()),
            'metadata': {
                'returned': len(page),
                'totalActive': self.alerts.count(),
                'filters': {'level': level, 'type': type, 'studentId': student_id, 'limit': limit},
            },
        }

    # Interventions

    def _refresh_profile(self, student_id: str) -> None:
        self.profiles.record_interventions(student_id, self.interventions.list_by_student(student_id))

    def create_intervention(self, data: InterventionCreate) -> Intervention:
        intervention = self.interventions.create(data)
        self._refresh_profile(intervention.student_id)
        logger.info(
            "Intervention %s (%s) created for student %s",
            intervention.id, intervention.type, intervention.student_id,
        )
        for person in intervention.assigned_to:
            # Notification delivery is simulated
            logger.info("Notifying %s of intervention %s", person, intervention.id)
        return intervention

    def update_intervention(
        self,
        intervention_id: str,
        patch: InterventionUpdate,
        author: str = 'system',
    ) -> Intervention:
        intervention = self.interventions.update(intervention_id, patch, author=author)
        if patch.status in ('completed', 'closed'):
            self.assessments.invalidate(intervention.student_id)
            logger.info(
                "Intervention %s %s, student %s flagged for reassessment",
                intervention.id, patch.status, intervention.student_id,
            )
        self._refresh_profile(intervention.student_id)
        return intervention

    @staticmethod
    def intervention_summary(interventions: List[Intervention]) -> Dict[str, Any]:
        progress = [i.progress for i in interventions]
        return {
            'total': len(interventions),
            'byStatus': count_by(interventions, 'status'),
            'byType': count_by(interventions, 'type'),
            'averageProgress': round(sum(progress) / len(progress), 1) if progress else 0.0,
        }

    # Views

    def dashboard(self, timeframe: str = '7d') -> Dict[str, Any]:
        window = parse_window(timeframe)
        now = self.clock()
        cutoff = now - window

        assessments = self.assessments.all()
        all_alerts = self.alerts.all()
        window_alerts = [a for a in all_alerts if a.timestamp >= cutoff]
        critical = sorted(
            (a for a in window_alerts if a.level in ('critical', 'emergency')),
            key=lambda a: a.timestamp,
            reverse=True,
        )
        interventions = self.interventions.list_all()
        active = sorted(
            (i for i in interventions if i.status == 'active'),
            key=lambda i: i.created_at,
            reverse=True,
        )

        return {
            'overview': {
                'studentsMonitored': len(assessments),
                'activeAlerts': len(all_alerts),
                'criticalRisks': len(critical),
                'activeInterventions': len(active),
                'successfulInterventions': sum(1 for i in interventions if i.status == 'completed'),
            },
            'riskDistribution': self._distribution(a.overall_risk_level for a in assessments),
            'trends': daily_trends(self.profiles.all_history(), cutoff),
            'alerts': {
                'critical': [a.to_json() for a in critical[:10]],
                'summary': self.alert_statistics(window_alerts, now),
            },
            'interventions': {
                'active': [i.to_json() for i in active[:10]],
                'summary': self.intervention_summary(interventions),
            },
            'recommendations': self._system_recommendations(assessments, critical, interventions),
            'timeframe': timeframe,
        }

    def _system_recommendations(
        self,
        assessments: List[RiskAssessment],
        critical_alerts: List[Alert],
        interventions: List[Intervention],
    ) -> List[str]:
        recs = []
        if not assessments:
            return ['Iniciar el monitoreo registrando análisis de estudiantes']
        if critical_alerts:
            recs.append(f"Atender {len(critical_alerts)} alertas críticas pendientes")
        covered = {i.student_id for i in interventions if i.status == 'active'}
        uncovered = [
            a.student_id for a in assessments
            if a.overall_risk_level in ('high', 'critical') and a.student_id not in covered
        ]
        if uncovered:
            recs.append(f"Asignar intervenciones a {len(uncovered)} estudiantes de alto riesgo sin seguimiento")
        low_confidence = sum(1 for a in assessments if a.confidence < 0.3)
        if low_confidence:
            recs.append(f"Completar datos de {low_confidence} estudiantes con baja confianza de análisis")
        if not recs:
            recs.append('Continuar monitoreo regular')
        return recs

    def student_profile(self, student_id: str) -> Dict[str, Any]:
        student_id = student_key(student_id)
        profile = self.profiles.get_or_create(student_id)
        current = self.assessments.get(student_id)
        alerts = self.alerts.query(student_id=student_id, limit=self.alerts.max_alerts)
        interventions = self.interventions.list_by_student(student_id)

        if current is not None:
            recommendations = {
                'interventions': recommend(current, self.categories, self.strategies),
                'nextSteps': next_steps(current),
            }
        else:
            recommendations = {'interventions': [], 'nextSteps': ['Realizar un análisis de riesgo inicial']}

        return {
            'profile': profile.to_json(),
            'currentAnalysis': current.to_json() if current else None,
            'alerts': [a.to_json() for a in alerts],
            'interventions': [i.to_json() for i in interventions],
            'riskHistory': [h.to_json() for h in self.profiles.history(student_id)],
            'recommendations': recommendations,
        }

    def predict(
        self,
        criteria: Optional[Dict[str, Any]] = None,
        time_horizon: str = '30d',
        confidence: float = 0.7,
    ) -> Dict[str, Any]:
        """
        Project category scores forward along each student's latest trend.

        Heuristic only: the slope between the last two history points is
        extrapolated over the horizon. Results are not authoritative.
        """
        criteria = criteria or {}
        horizon_days = parse_window(time_horizon).total_seconds() / 86400

        student_ids = criteria.get('studentIds')
        risk_types = criteria.get('riskTypes') or list(self.categories)
        unknown = [t for t in risk_types if t not in self.categories]
        if unknown:
            raise ValidationError("Unknown risk types", details=unknown)
        try:
            min_risk = float(criteria.get('minRisk', 0.5))
        except (TypeError, ValueError):
            raise ValidationError("minRisk must be a number")
        if not 0.0 <= min_risk <= 1.0:
            raise ValidationError("minRisk must be within [0, 1]")

        predictions = []
        evaluated = 0
        for assessment in self.assessments.all():
            if student_ids and assessment.student_id not in student_ids:
                continue
            if assessment.confidence < confidence:
                continue
            evaluated += 1
            history = self.profiles.history(assessment.student_id)
            for category in risk_types:
                current = assessment.category_scores.get(category, 0.0)
                slope = 0.0
                if len(history) >= 2:
                    prev, last = history[-2], history[-1]
                    days = (last.timestamp - prev.timestamp).total_seconds() / 86400
                    if days > 0:
                        slope = (last.category_scores.get(category, 0.0)
                                 - prev.category_scores.get(category, 0.0)) / days
                projected = min(1.0, max(0.0, current + slope * horizon_days))
                if projected < min_risk:
                    continue
                predictions.append({
                    'studentId': assessment.student_id,
                    'category': category,
                    'currentScore': current,
                    'projectedScore': projected,
                    'projectedLevel': get_risk_level(projected, self.categories[category]['thresholds']),
                    'trend': 'rising' if slope > 0 else 'falling' if slope < 0 else 'stable',
                    'confidence': assessment.confidence,
                })

        predictions.sort(key=lambda p: -p['projectedScore'])
        return {
            'predictions': predictions,
            'preventiveActions': preventive_actions(predictions),
            'metadata': {
                'timeHorizon': time_horizon,
                'confidence': confidence,
                'authoritative': False,
                'method': 'linear-trend-heuristic',
                'studentsEvaluated': evaluated,
                'factors': len(predictions),
            },
        }

    def config_snapshot(self) -> Dict[str, Any]:
        return {
            'riskTypes': self.categories,
            'interventionStrategies': self.strategies,
            'alertLevels': config.ALERT_LEVELS,
            'riskLevels': config.RISK_LEVELS,
            'overallThresholds': config.OVERALL_RISK_THRESHOLDS,
            'stalenessWindowSeconds': self.assessments.ttl.total_seconds(),
            'systemCapabilities': {
                'predictiveAnalysis': True,
                'automaticAlerts': True,
                'interventionTracking': True,
                'reporting': True,
            },
        }

    def health(self) -> Dict[str, Any]:
        return {
            'status': 'operational',
            'version': config.VERSION,
            'uptime': round(time.monotonic() - self.started, 3),
            'statistics': {
                'studentsMonitored': self.assessments.count(),
                'activeAlerts': self.alerts.count(),
                'activeInterventions': len(self.interventions.list_by_status('active')),
                'totalInterventions': self.interventions.count(),
            },
        }
