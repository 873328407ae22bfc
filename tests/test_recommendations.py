"""Unit tests for intervention recommendations."""

from app.config import INTERVENTION_STRATEGIES
from app.recommendations import next_steps, preventive_actions, recommend, urgency
from app.risk import compute_assessment


def test_recommend_at_medium_threshold():
    """Categories at or above 'medium' get their full strategy list."""
    # academic medium threshold is 0.5
    recs = recommend(compute_assessment('S1', {'grades': 0.5}))
    assert len(recs) == 1
    assert recs[0]['category'] == 'academic'
    assert recs[0]['strategies'] == INTERVENTION_STRATEGIES['academic']
    assert recs[0]['priority'] == 'medium'
    assert recs[0]['timeline'] == 'medium-term'

    assert recommend(compute_assessment('S1', {'grades': 0.49})) == []


def test_recommend_is_pure():
    assessment = compute_assessment('S1', {'stress_indicators': 0.9, 'bullying': 0.7})
    first = recommend(assessment)
    first[0]['strategies'].append('changed')
    second = recommend(assessment)

    assert [r['category'] for r in second] == ['emotional', 'social']
    assert 'changed' not in second[0]['strategies']
    assert second[0]['timeline'] == 'immediate'


def test_urgency_and_next_steps():
    low = compute_assessment('S1', {'grades': 0.2})
    assert urgency(low) == 'medium'
    assert next_steps(low) == ['Continuar monitoreo regular', 'Reforzar estrategias preventivas']

    high = compute_assessment('S1', {'x': 0.7}, categories={
        'only': {'weight': 1.0, 'factors': ['x'],
                 'thresholds': {'low': 0.3, 'medium': 0.5, 'high': 0.7, 'critical': 0.85}},
    })
    assert urgency(high) == 'high'
    assert len(next_steps(high)) == 3


def test_preventive_actions():
    predictions = [
        {'studentId': 'S1', 'category': 'emotional'},
        {'studentId': 'S2', 'category': 'emotional'},
        {'studentId': 'S1', 'category': 'academic'},
    ]
    actions = preventive_actions(predictions)

    assert actions[0]['category'] == 'emotional'
    assert actions[0]['studentsAffected'] == 2
    assert actions[0]['strategies'] == INTERVENTION_STRATEGIES['emotional'][:2]
    assert actions[1]['category'] == 'academic'
