"""Runtime configuration and the static risk category table."""

import os
from typing import Dict, List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def parse_thresholds(value: str) -> Dict[str, float]:
    """Parse a ``low:0.3,medium:0.5,...`` string into a threshold dict."""
    thresholds = {}
    for item in value.split(','):
        if not item.strip():
            continue
        key, raw = item.split(':')
        thresholds[key.strip()] = float(raw.strip())
    return thresholds


VERSION = "3.0.0"

ALLOW_ORIGINS = os.getenv('ALLOW_ORIGINS', '*').split(',')
DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Cached assessments younger than this are reused
RISK_CACHE_TTL_SECONDS = float(os.getenv('RISK_CACHE_TTL_SECONDS', '3600'))

OVERALL_RISK_THRESHOLDS = parse_thresholds(
    os.getenv('OVERALL_RISK_THRESHOLDS', 'low:0.3,medium:0.5,high:0.7,critical:0.85')
)

ALERT_RETENTION_LIMIT = int(os.getenv('ALERT_RETENTION_LIMIT', '5000'))
ALERT_DEDUP = os.getenv('ALERT_DEDUP', 'True').lower() == 'true'
EMERGENCY_OVERALL_RISK = 0.8

RISK_HISTORY_LIMIT = int(os.getenv('RISK_HISTORY_LIMIT', '50'))

BATCH_MAX_WORKERS = int(os.getenv('BATCH_MAX_WORKERS', '4'))
BATCH_MAX_SIZE = int(os.getenv('BATCH_MAX_SIZE', '500'))

STORE_LOCK_TIMEOUT_SECONDS = float(os.getenv('STORE_LOCK_TIMEOUT_SECONDS', '5'))

ALERT_LEVELS = ['info', 'warning', 'critical', 'emergency']
RISK_LEVELS = ['minimal', 'low', 'medium', 'high', 'critical']
INTERVENTION_STATUSES = ['active', 'completed', 'closed', 'cancelled']

RISK_CATEGORIES: Dict[str, dict] = {
    'academic': {
        'name': 'Riesgo Académico',
        'weight': 0.25,
        'factors': ['grades', 'attendance', 'assignments', 'participation', 'test_scores'],
        'thresholds': {'low': 0.3, 'medium': 0.5, 'high': 0.7, 'critical': 0.85},
    },
    'dropout': {
        'name': 'Riesgo de Deserción',
        'weight': 0.25,
        'factors': ['attendance', 'family_support', 'economic_status', 'academic_performance'],
        'thresholds': {'low': 0.4, 'medium': 0.6, 'high': 0.75, 'critical': 0.9},
    },
    'emotional': {
        'name': 'Riesgo Emocional',
        'weight': 0.2,
        'factors': ['stress_indicators', 'social_isolation', 'mood_changes', 'communication'],
        'thresholds': {'low': 0.35, 'medium': 0.55, 'high': 0.7, 'critical': 0.85},
    },
    'social': {
        'name': 'Riesgo Social',
        'weight': 0.15,
        'factors': ['peer_relationships', 'group_integration', 'conflict_history', 'bullying'],
        'thresholds': {'low': 0.4, 'medium': 0.6, 'high': 0.75, 'critical': 0.9},
    },
    'behavioral': {
        'name': 'Riesgo Conductual',
        'weight': 0.1,
        'factors': ['discipline_issues', 'rule_compliance', 'aggression', 'substance_indicators'],
        'thresholds': {'low': 0.3, 'medium': 0.5, 'high': 0.7, 'critical': 0.85},
    },
    'family': {
        'name': 'Riesgo Familiar',
        'weight': 0.05,
        'factors': ['family_support', 'home_stability', 'parent_involvement', 'family_conflicts'],
        'thresholds': {'low': 0.35, 'medium': 0.55, 'high': 0.75, 'critical': 0.9},
    },
}

INTERVENTION_STRATEGIES: Dict[str, List[str]] = {
    'academic': ['tutoring', 'study_plan', 'academic_support', 'teacher_mentoring', 'resource_provision'],
    'emotional': ['counseling', 'peer_support', 'stress_management', 'therapy_referral', 'wellness_program'],
    'social': ['social_skills', 'integration_activities', 'conflict_resolution', 'peer_mediation'],
    'behavioral': ['behavior_plan', 'counseling', 'mentoring', 'family_involvement', 'external_referral'],
    'family': ['parent_meetings', 'family_therapy', 'resource_connection', 'social_services'],
    'dropout': ['intensive_support', 'flexible_scheduling', 'career_counseling', 'financial_assistance'],
}

# Descriptive factors attached to a category once its score passes 0.5
RISK_FACTOR_DESCRIPTIONS: Dict[str, List[str]] = {
    'academic': ['Calificaciones por debajo del promedio', 'Asistencia irregular', 'Tareas incompletas'],
    'dropout': ['Baja asistencia', 'Poco apoyo familiar', 'Dificultades económicas'],
    'emotional': ['Alto nivel de estrés', 'Aislamiento social', 'Comunicación limitada'],
    'social': ['Dificultades con compañeros', 'Baja integración', 'Conflictos recurrentes'],
    'behavioral': ['Problemas disciplinarios', 'Incumplimiento de normas', 'Comportamiento agresivo'],
    'family': ['Falta de apoyo familiar', 'Inestabilidad en el hogar', 'Poca participación de padres'],
}

ALERT_MESSAGES: Dict[str, str] = {
    'academic': 'Rendimiento académico en riesgo {level}',
    'dropout': 'Riesgo de deserción detectado - Nivel {level}',
    'emotional': 'Indicadores emocionales requieren atención - Nivel {level}',
    'social': 'Dificultades sociales identificadas - Nivel {level}',
    'behavioral': 'Problemas conductuales detectados - Nivel {level}',
    'family': 'Situación familiar requiere apoyo - Nivel {level}',
    'overall': 'Riesgo general crítico - intervención inmediata requerida',
}


def all_factors(categories: Dict[str, dict]) -> List[str]:
    """Union of every category's factor list, in first-seen order."""
    seen: List[str] = []
    for config in categories.values():
        for factor in config['factors']:
            if factor not in seen:
                seen.append(factor)
    return seen
