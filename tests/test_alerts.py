"""Unit tests for alert generation."""

from app.alerts import evaluate_for_alerts, get_alert_level
from app.config import RISK_CATEGORIES
from app.risk import compute_assessment


def test_get_alert_level():
    thresholds = RISK_CATEGORIES['academic']['thresholds']
    assert get_alert_level(0.69, thresholds) is None
    assert get_alert_level(0.7, thresholds) == 'warning'
    assert get_alert_level(0.84, thresholds) == 'warning'
    assert get_alert_level(0.85, thresholds) == 'critical'


def test_alert_threshold_boundaries():
    """Exactly at 'high' warns, exactly at 'critical' is critical, below 'high' is silent."""
    at_high = evaluate_for_alerts(compute_assessment('S1', {'grades': 0.7}))
    assert [(a.type, a.level) for a in at_high] == [('academic', 'warning')]

    at_critical = evaluate_for_alerts(compute_assessment('S1', {'grades': 0.85}))
    assert [(a.type, a.level) for a in at_critical] == [('academic', 'critical')]

    below = evaluate_for_alerts(compute_assessment('S1', {'grades': 0.69}))
    assert below == []


def test_example_generates_critical_academic_alert():
    assessment = compute_assessment('S1', {'attendance': 0.9, 'grades': 0.85})
    alerts = evaluate_for_alerts(assessment)

    academic = [a for a in alerts if a.type == 'academic']
    assert len(academic) == 1
    assert academic[0].level == 'critical'
    assert academic[0].student_id == 'S1'
    assert academic[0].source_assessment_id == assessment.id
    assert academic[0].risk_score == assessment.category_scores['academic']


def test_overall_emergency_alert():
    """Overall risk above 0.8 adds one emergency alert of type 'overall'."""
    data = {f: 1.0 for cat in RISK_CATEGORIES.values() for f in cat['factors']}
    alerts = evaluate_for_alerts(compute_assessment('S1', data))

    overall = [a for a in alerts if a.type == 'overall']
    assert len(overall) == 1
    assert overall[0].level == 'emergency'
    # Every category is also critical
    assert sum(1 for a in alerts if a.level == 'critical') == len(RISK_CATEGORIES)


def test_no_emergency_at_exactly_point_eight():
    categories = {
        'only': {'name': 'Only', 'weight': 1.0, 'factors': ['x'],
                 'thresholds': {'low': 0.3, 'medium': 0.5, 'high': 0.9, 'critical': 0.95}},
    }
    assessment = compute_assessment('S1', {'x': 0.8}, categories=categories)
    assert evaluate_for_alerts(assessment, categories) == []
