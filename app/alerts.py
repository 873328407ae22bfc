"""Alert generation from a computed assessment."""

import uuid
from typing import Dict, List, Optional

from app import config
from app.models import Alert, RiskAssessment

LEVEL_RANK = {level: rank for rank, level in enumerate(config.ALERT_LEVELS)}


def _alert_id() -> str:
    return f"alert_{uuid.uuid4().hex[:12]}"


def get_alert_level(score: float, thresholds: Dict[str, float]) -> Optional[str]:
    """Alert level for a category score, or None below the 'high' threshold."""
    if score >= thresholds['critical']:
        return 'critical'
    if score >= thresholds['high']:
        return 'warning'
    return None


def evaluate_for_alerts(
    assessment: RiskAssessment,
    categories: Optional[Dict[str, dict]] = None,
) -> List[Alert]:
    """
    Synthesize the alerts an assessment warrants.

    One alert per category at or above its 'high' threshold, plus an
    'overall' emergency alert when the overall risk exceeds 0.8. Nothing
    is stored here.
    """
    categories = categories if categories is not None else config.RISK_CATEGORIES
    alerts: List[Alert] = []

    for key, score in assessment.category_scores.items():
        cat = categories.get(key)
        if cat is None:
            continue
        level = get_alert_level(score, cat['thresholds'])
        if level is None:
            continue
        detail = assessment.categories.get(key)
        category_level = detail.level if detail else level
        template = config.ALERT_MESSAGES.get(key, 'Riesgo {category} - Nivel {level}')
        alerts.append(Alert(
            id=_alert_id(),
            student_id=assessment.student_id,
            type=key,
            level=level,
            title=f"{cat.get('name', key)} - Nivel {category_level}",
            message=template.format(level=category_level, category=key),
            timestamp=assessment.timestamp,
            source_assessment_id=assessment.id,
            risk_score=score,
            factors=detail.factors if detail else [],
        ))

    if assessment.overall_risk > config.EMERGENCY_OVERALL_RISK:
        alerts.append(Alert(
            id=_alert_id(),
            student_id=assessment.student_id,
            type='overall',
            level='emergency',
            title=f"Riesgo General - Nivel {assessment.overall_risk_level}",
            message=config.ALERT_MESSAGES['overall'],
            timestamp=assessment.timestamp,
            source_assessment_id=assessment.id,
            risk_score=assessment.overall_risk,
        ))

    return alerts
