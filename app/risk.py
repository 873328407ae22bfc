"""Risk scoring logic: per-category scores and the weighted overall risk."""

import math
import numbers
import uuid
from datetime import datetime
from typing import Dict, List, Mapping, Optional

import numpy as np

from app import config
from app.errors import ValidationError
from app.models import CategoryResult, RiskAssessment
from app.time_utils import utc_now


def get_risk_level(score: float, thresholds: Mapping[str, float]) -> str:
    """
    Bucket a score against ascending lower-bound thresholds.

    Args:
        score: Risk score (0-1)
        thresholds: Dict with 'low', 'medium', 'high', 'critical' lower bounds

    Returns:
        One of 'minimal', 'low', 'medium', 'high', 'critical'
    """
    if score >= thresholds['critical']:
        return 'critical'
    elif score >= thresholds['high']:
        return 'high'
    elif score >= thresholds['medium']:
        return 'medium'
    elif score >= thresholds['low']:
        return 'low'
    return 'minimal'


def validate_factor_inputs(factor_inputs: Optional[Mapping]) -> Dict[str, float]:
    """
    Check that every factor value is a real number in [0, 1].

    Raises:
        ValidationError: on a non-mapping payload or any bad value
    """
    if factor_inputs is None:
        return {}
    if not isinstance(factor_inputs, Mapping):
        raise ValidationError("Factor data must be an object of factor name to value")

    cleaned = {}
    errors = []
    for name, value in factor_inputs.items():
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            errors.append(f"{name}: expected a number, got {type(value).__name__}")
            continue
        value = float(value)
        if math.isnan(value) or value < 0.0 or value > 1.0:
            errors.append(f"{name}: value {value} outside [0, 1]")
            continue
        cleaned[str(name)] = value

    if errors:
        raise ValidationError("Invalid factor data", details=errors)
    return cleaned


def identify_risk_factors(category: str, score: float) -> List[str]:
    """Descriptive risk factors for a category; more are listed as the score grows."""
    if score <= 0.5:
        return []
    descriptions = config.RISK_FACTOR_DESCRIPTIONS.get(category, [])
    return descriptions[:math.ceil(score * 3)]


def compute_assessment(
    student_id: Optional[str],
    factor_inputs: Optional[Mapping],
    categories: Optional[Dict[str, dict]] = None,
    overall_thresholds: Optional[Mapping[str, float]] = None,
    now: Optional[datetime] = None,
) -> RiskAssessment:
    """
    Compute a risk assessment from raw factor values.

    Each category scores the mean of the supplied factors it lists; a
    category with no supplied factors scores 0. The overall risk is the
    weight-normalized mean of the category scores.

    Args:
        student_id: Student identifier (required)
        factor_inputs: Mapping of factor name to value in [0, 1]
        categories: Category table, defaults to config.RISK_CATEGORIES
        overall_thresholds: Thresholds for the overall level
        now: Timestamp to stamp the assessment with

    Returns:
        RiskAssessment

    Raises:
        ValidationError: if student_id is missing or factor data is malformed
    """
    if student_id is None or not str(student_id).strip():
        raise ValidationError("Student ID is required")
    student_id = str(student_id).strip()

    categories = categories if categories is not None else config.RISK_CATEGORIES
    overall_thresholds = overall_thresholds or config.OVERALL_RISK_THRESHOLDS
    inputs = validate_factor_inputs(factor_inputs)

    category_scores: Dict[str, float] = {}
    details: Dict[str, CategoryResult] = {}
    for key, cat in categories.items():
        values = [inputs[f] for f in cat['factors'] if f in inputs]
        score = float(np.mean(values)) if values else 0.0
        score = min(1.0, max(0.0, score))
        category_scores[key] = score
        details[key] = CategoryResult(
            score=score,
            level=get_risk_level(score, cat['thresholds']),
            weight=cat['weight'],
            factors=identify_risk_factors(key, score),
        )

    weights = np.array([cat['weight'] for cat in categories.values()], dtype=float)
    scores = np.array([category_scores[key] for key in categories], dtype=float)
    total_weight = weights.sum()
    overall = float((scores * weights).sum() / total_weight) if total_weight > 0 else 0.0

    expected = config.all_factors(categories)
    analyzed = sum(1 for name in inputs if name in expected)
    confidence = min(1.0, max(0.0, analyzed / len(expected))) if expected else 0.0

    timestamp = now or utc_now()
    return RiskAssessment(
        id=f"risk_{uuid.uuid4().hex[:12]}_{student_id}",
        student_id=student_id,
        timestamp=timestamp,
        category_scores=category_scores,
        categories=details,
        overall_risk=overall,
        overall_risk_level=get_risk_level(overall, overall_thresholds),
        confidence=confidence,
        factors_analyzed=analyzed,
    )
