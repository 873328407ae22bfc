"""Tests for the risk service orchestration."""

import pytest

from app.errors import NotFoundError, ValidationError
from app.models import InterventionCreate, InterventionUpdate
from app.service import RiskService
from app.stores import AlertStore, InterventionStore, ProfileStore


def test_analyze_stores_alerts_and_recommendations(service):
    result = service.analyze('S1', {'attendance': 0.9, 'grades': 0.85})

    assert result['fromCache'] is False
    assert result['analysis']['categoryScores']['academic'] == pytest.approx(0.875)
    academic = [a for a in result['alerts'] if a['type'] == 'academic']
    assert len(academic) == 1 and academic[0]['level'] == 'critical'
    assert {r['category'] for r in result['interventions']} == {'academic', 'dropout'}
    assert result['recommendations']['priority'] == result['analysis']['overallRiskLevel']

    stored = service.alerts.query(student_id='S1')
    assert {a.id for a in stored} == {a['id'] for a in result['alerts']}


def test_cached_analysis_creates_no_new_alerts(service, clock):
    first = service.analyze('S1', {'grades': 0.9})
    clock.advance(minutes=10)
    second = service.analyze('S1', {'grades': 0.9})

    assert second['fromCache'] is True
    assert second['analysis']['id'] == first['analysis']['id']
    assert second['alerts'] == []
    assert service.alerts.count() == 1


def test_repeated_forced_analysis_is_deduplicated(service):
    service.analyze('S1', {'grades': 0.9})
    again = service.analyze('S1', {'grades': 0.9}, force_reanalysis=True)

    assert again['fromCache'] is False
    assert again['alerts'] == []
    assert service.alerts.count() == 1


def test_completing_intervention_invalidates_cache(service, clock):
    """After completion the next analysis recomputes even inside the window."""
    first = service.analyze('S1', {'grades': 0.8})
    intervention = service.create_intervention(InterventionCreate(student_id='S1', type='academic'))

    clock.advance(minutes=5)
    cached = service.analyze('S1', None)
    assert cached['fromCache'] is True

    service.update_intervention(intervention.id, InterventionUpdate(status='completed'))
    clock.advance(minutes=1)
    fresh = service.analyze('S1', None)

    assert fresh['fromCache'] is False
    assert fresh['analysis']['id'] != first['analysis']['id']
    assert fresh['analysis']['categoryScores'] == first['analysis']['categoryScores']


def test_progress_update_keeps_cache(service):
    service.analyze('S1', {'grades': 0.8})
    intervention = service.create_intervention(InterventionCreate(student_id='S1', type='academic'))
    service.update_intervention(intervention.id, InterventionUpdate(progress=50))

    assert service.analyze('S1', None)['fromCache'] is True


def test_update_unknown_intervention(service):
    with pytest.raises(NotFoundError):
        service.update_intervention('nope', InterventionUpdate(progress=10))


def test_batch_isolation(service):
    """One malformed entry fails alone; the others succeed."""
    result = service.analyze_batch(
        ['S1', 'S2', 'S3'],
        data={
            'S1': {'grades': 0.9},
            'S2': {'grades': 'not-a-number'},
            'S3': {'stress_indicators': 0.2},
        },
    )

    by_id = {r['studentId']: r for r in result['results']}
    assert [r['studentId'] for r in result['results']] == ['S1', 'S2', 'S3']
    assert by_id['S1']['success'] is True
    assert by_id['S3']['success'] is True
    assert by_id['S2']['success'] is False
    assert 'error' in by_id['S2'] and 'analysis' not in by_id['S2']

    stats = result['statistics']
    assert stats['total'] == 3
    assert stats['successful'] == 2
    assert stats['failed'] == 1
    assert stats['alertsGenerated'] == len(result['alerts'])
    assert service.assessments.get('S2') is None


def test_batch_rejects_blank_ids_per_entry(service):
    result = service.analyze_batch(['S1', '', 42], data={'S1': {'grades': 0.1}})
    assert [r['success'] for r in result['results']] == [True, False, False]


def test_batch_requires_ids(service):
    with pytest.raises(ValidationError):
        service.analyze_batch([])
    with pytest.raises(ValidationError):
        service.analyze_batch(None)


def test_batch_size_limit(service):
    service.batch_max_size = 2
    with pytest.raises(ValidationError):
        service.analyze_batch(['S1', 'S2', 'S3'])


def test_batch_summary(service):
    everything = {f: 1.0 for f in ['grades', 'attendance', 'family_support', 'economic_status',
                                    'stress_indicators', 'bullying', 'aggression', 'home_stability']}
    result = service.analyze_batch(['HIGH', 'LOW'], data={'HIGH': everything, 'LOW': {'grades': 0.1}})

    assert result['statistics']['highRisk'] == 1
    assert result['summary']['priorityStudents'][0]['studentId'] == 'HIGH'
    assert result['summary']['riskDistribution']['critical'] == 1
    assert result['summary']['riskDistribution']['minimal'] == 1


def test_query_alerts_statistics(service):
    service.analyze('S1', {'grades': 0.9})
    service.analyze('S2', {'grades': 0.72})

    result = service.query_alerts()
    assert result['statistics']['total'] == 2
    assert result['statistics']['byLevel']['critical'] == 1
    assert result['statistics']['byLevel']['warning'] == 1
    assert result['statistics']['byType'] == {'academic': 2}
    assert result['metadata']['totalActive'] == 2

    with pytest.raises(ValidationError):
        service.query_alerts(level='severe')


def test_dashboard(service):
    service.analyze('S1', {'grades': 0.9})
    service.analyze('S2', {'grades': 0.1})
    service.create_intervention(InterventionCreate(student_id='S2', type='academic'))

    data = service.dashboard('7d')
    assert data['overview']['studentsMonitored'] == 2
    assert data['overview']['activeInterventions'] == 1
    assert data['overview']['criticalRisks'] == 1
    assert sum(data['riskDistribution'].values()) == 2
    assert data['trends']['dates'] == ['2025-09-25']
    assert data['trends']['assessments'] == [2]
    assert len(data['alerts']['critical']) == 1
    assert data['interventions']['summary']['total'] == 1

    with pytest.raises(ValidationError):
        service.dashboard('forever')


def test_student_profile(service):
    service.analyze('S1', {'grades': 0.9})
    service.create_intervention(InterventionCreate(student_id='S1', type='academic', assigned_to=['tutor']))

    data = service.student_profile('S1')
    assert data['profile']['studentId'] == 'S1'
    assert data['profile']['interventionCount'] == 1
    assert data['profile']['activeInterventions'] == 1
    assert data['currentAnalysis']['studentId'] == 'S1'
    assert len(data['alerts']) == 1
    assert len(data['interventions']) == 1
    assert len(data['riskHistory']) == 1
    assert data['recommendations']['interventions'][0]['category'] == 'academic'


def test_unknown_student_profile_is_created(service):
    data = service.student_profile('NEW')
    assert data['currentAnalysis'] is None
    assert data['alerts'] == [] and data['interventions'] == []


def test_predict_follows_recent_trend(service, clock):
    service.analyze('S1', {'grades': 0.5})
    clock.advance(days=1)
    service.analyze('S1', {'grades': 0.7}, force_reanalysis=True)

    result = service.predict({'riskTypes': ['academic']}, '7d', confidence=0.0)
    assert result['metadata']['authoritative'] is False
    assert len(result['predictions']) == 1
    prediction = result['predictions'][0]
    assert prediction['trend'] == 'rising'
    assert prediction['projectedScore'] == pytest.approx(1.0)
    assert prediction['projectedLevel'] == 'critical'
    assert result['preventiveActions'][0]['category'] == 'academic'


def test_predict_respects_confidence_and_validation(service):
    service.analyze('S1', {'grades': 0.9})
    assert service.predict({}, '30d', confidence=0.5)['predictions'] == []

    with pytest.raises(ValidationError):
        service.predict({'riskTypes': ['astrology']})
    with pytest.raises(ValidationError):
        service.predict({'minRisk': 3})


def test_custom_category_table_drives_scoring(clock):
    """A category table passed to the service is the one the default store scores with."""
    categories = {
        'only': {
            'name': 'Only',
            'weight': 1.0,
            'factors': ['x'],
            'thresholds': {'low': 0.3, 'medium': 0.5, 'high': 0.7, 'critical': 0.85},
        },
    }
    service = RiskService(
        alerts=AlertStore(),
        interventions=InterventionStore(clock=clock),
        profiles=ProfileStore(clock=clock),
        categories=categories,
        strategies={'only': ['one-on-one']},
        clock=clock,
    )
    result = service.analyze('S1', {'x': 0.95})

    assert result['analysis']['categoryScores'] == {'only': pytest.approx(0.95)}
    assert ('only', 'critical') in [(a['type'], a['level']) for a in result['alerts']]
    assert result['interventions'][0]['category'] == 'only'
    assert result['interventions'][0]['strategies'] == ['one-on-one']


def test_padded_student_id_is_one_student(service, clock):
    """Surrounding whitespace never splits a student's cache, interventions or profile."""
    service.analyze('S1 ', {'grades': 0.8})
    intervention = service.create_intervention(InterventionCreate(student_id='S1 ', type='academic'))
    assert intervention.student_id == 'S1'

    service.update_intervention(intervention.id, InterventionUpdate(status='completed'))
    clock.advance(minutes=1)
    again = service.analyze('S1 ', None)
    assert again['fromCache'] is False

    profile = service.student_profile(' S1')
    assert profile['profile']['interventionCount'] == 1
    assert len(profile['riskHistory']) == 2
    assert len(service.query_alerts(student_id='S1 ')['alerts']) == 1


def test_batch_criteria_are_typed(service):
    service.analyze('S1', {'grades': 0.4})

    kept = service.analyze_batch(['S1'], data={'S1': {'grades': 0.4}}, criteria={'forceReanalysis': 'false'})
    assert kept['results'][0]['fromCache'] is True

    forced = service.analyze_batch(['S1'], data={'S1': {'grades': 0.4}}, criteria={'forceReanalysis': 'true'})
    assert forced['results'][0]['fromCache'] is False

    with pytest.raises(ValidationError):
        service.analyze_batch(['S1'], criteria={'forceReanalysis': 'sometimes'})


def test_alert_statistics_cover_all_matches(service):
    """The page is capped by limit; the statistics are not."""
    for i in range(7):
        service.analyze(f'S{i}', {'grades': 0.9})

    result = service.query_alerts(level='critical', limit=5)
    assert len(result['alerts']) == 5
    assert result['metadata']['returned'] == 5
    assert result['statistics']['total'] == 7
    assert result['statistics']['byLevel']['critical'] == 7
