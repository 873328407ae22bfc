"""Intervention recommendations and follow-up steps for an assessment."""

from typing import Dict, List, Optional

from app import config
from app.models import RiskAssessment


def _timeline(score: float) -> str:
    if score > 0.7:
        return 'immediate'
    if score > 0.5:
        return 'short-term'
    return 'medium-term'


def recommend(
    assessment: RiskAssessment,
    categories: Optional[Dict[str, dict]] = None,
    strategies: Optional[Dict[str, List[str]]] = None,
) -> List[dict]:
    """
    Suggest strategies for every category at or above its 'medium' threshold.

    Suggestions are not persisted; creating an intervention is a separate
    explicit call.
    """
    categories = categories if categories is not None else config.RISK_CATEGORIES
    strategies = strategies if strategies is not None else config.INTERVENTION_STRATEGIES

    out: List[dict] = []
    for key, score in assessment.category_scores.items():
        cat = categories.get(key)
        if cat is None or score < cat['thresholds']['medium']:
            continue
        detail = assessment.categories.get(key)
        out.append({
            'category': key,
            'strategies': list(strategies.get(key, [])),
            'priority': detail.level if detail else None,
            'timeline': _timeline(score),
        })
    return out


def urgency(assessment: RiskAssessment) -> str:
    if assessment.overall_risk > 0.8:
        return 'immediate'
    if assessment.overall_risk > 0.6:
        return 'high'
    return 'medium'


def next_steps(assessment: RiskAssessment) -> List[str]:
    if assessment.overall_risk > 0.8:
        return [
            'Intervención inmediata requerida',
            'Contactar a padres/tutores',
            'Asignar consejero especializado',
        ]
    if assessment.overall_risk > 0.6:
        return [
            'Programar reunión con el estudiante',
            'Desarrollar plan de apoyo',
            'Monitoreo semanal',
        ]
    return [
        'Continuar monitoreo regular',
        'Reforzar estrategias preventivas',
    ]


def preventive_actions(predictions: List[dict], max_per_category: int = 2) -> List[dict]:
    """Preventive strategies for the categories that appear in a prediction set."""
    counts: Dict[str, int] = {}
    for p in predictions:
        counts[p['category']] = counts.get(p['category'], 0) + 1

    actions = []
    for category, affected in sorted(counts.items(), key=lambda kv: -kv[1]):
        actions.append({
            'category': category,
            'studentsAffected': affected,
            'strategies': config.INTERVENTION_STRATEGIES.get(category, [])[:max_per_category],
        })
    return actions
