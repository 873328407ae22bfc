"""Report generation and CSV/Excel export."""

import csv
import logging
from collections import Counter
from datetime import datetime
from io import BytesIO, StringIO
from typing import Any, Dict, Iterable, List

import pandas as pd

from app import config
from app.errors import ValidationError
from app.models import RiskHistoryEntry
from app.time_utils import parse_window

logger = logging.getLogger(__name__)

REPORT_TYPES = ['risk-summary', 'interventions', 'alerts', 'trends']
REPORT_FORMATS = ['json', 'csv', 'xlsx']


def count_by(items: Iterable[Any], attr: str) -> Dict[str, int]:
    """Count items by the value of one attribute."""
    return dict(Counter(getattr(item, attr) for item in items))


def _clean(value) -> Any:
    """Replace NaN with None so the value is JSON compliant."""
    if value is None or pd.isna(value):
        return None
    return round(float(value), 4)


def daily_trends(histories: Dict[str, List[RiskHistoryEntry]], since: datetime) -> Dict[str, Any]:
    """
    Average risk per UTC day from the assessment history.

    Returns:
        Dict with 'dates', 'assessments' (count per day) and 'series'
        (overall plus one list per category, aligned with 'dates')
    """
    rows = []
    for entries in histories.values():
        for h in entries:
            rows.append({'timestamp': h.timestamp, 'overall': h.overall_risk, **h.category_scores})

    empty = {'dates': [], 'assessments': [], 'series': {}}
    if not rows:
        return empty

    df = pd.DataFrame(rows)
    df['timestamp'] = pd.to_datetime(df['timestamp'], utc=True)
    df = df[df['timestamp'] >= pd.Timestamp(since)]
    if df.empty:
        return empty

    df['date'] = df['timestamp'].dt.strftime('%Y-%m-%d')
    grouped = df.drop(columns=['timestamp']).groupby('date')
    means = grouped.mean().sort_index()
    counts = grouped.size().sort_index()

    return {
        'dates': list(means.index),
        'assessments': [int(c) for c in counts.tolist()],
        'series': {col: [_clean(v) for v in means[col].tolist()] for col in means.columns},
    }


def _risk_summary(service, since: datetime) -> Dict[str, Any]:
    assessments = [a for a in service.assessments.all() if a.timestamp >= since]
    categories = list(service.categories)
    rows = []
    for a in assessments:
        row = {
            'studentId': a.student_id,
            'timestamp': a.timestamp.isoformat(),
            'overallRisk': round(a.overall_risk, 4),
            'overallRiskLevel': a.overall_risk_level,
            'confidence': round(a.confidence, 4),
            'factorsAnalyzed': a.factors_analyzed,
        }
        for key in categories:
            row[key] = round(a.category_scores.get(key, 0.0), 4)
        rows.append(row)

    distribution = {level: 0 for level in config.RISK_LEVELS}
    distribution.update(count_by(assessments, 'overall_risk_level'))
    average = sum(a.overall_risk for a in assessments) / len(assessments) if assessments else 0.0
    columns = ['studentId', 'timestamp', 'overallRisk', 'overallRiskLevel', 'confidence',
               'factorsAnalyzed'] + categories
    summary = {'totalStudents': len(assessments), 'riskDistribution': distribution,
               'averageRisk': round(average, 4)}
    return {'columns': columns, 'rows': rows, 'summary': summary}


def _interventions(service, since: datetime) -> Dict[str, Any]:
    interventions = [i for i in service.interventions.list_all() if i.created_at >= since]
    columns = ['id', 'studentId', 'type', 'strategy', 'priority', 'status', 'progress',
               'timeline', 'assignedTo', 'createdAt', 'updatedAt']
    rows = []
    for i in interventions:
        data = i.to_json()
        data['assignedTo'] = '; '.join(i.assigned_to)
        rows.append({col: data.get(col) for col in columns})
    return {'columns': columns, 'rows': rows, 'summary': service.intervention_summary(interventions)}


def _alerts(service, since: datetime) -> Dict[str, Any]:
    alerts = [a for a in service.alerts.all() if a.timestamp >= since]
    alerts.sort(key=lambda a: a.timestamp, reverse=True)
    columns = ['id', 'studentId', 'type', 'level', 'title', 'message', 'riskScore',
               'timestamp', 'sourceAssessmentId']
    rows = []
    for a in alerts:
        data = a.to_json()
        rows.append({col: data.get(col) for col in columns})
    return {'columns': columns, 'rows': rows, 'summary': service.alert_statistics(alerts, service.clock())}


def _trends(service, since: datetime) -> Dict[str, Any]:
    trends = daily_trends(service.profiles.all_history(), since)
    series = trends['series']
    columns = ['date', 'assessments'] + list(series)
    rows = []
    for idx, date in enumerate(trends['dates']):
        row = {'date': date, 'assessments': trends['assessments'][idx]}
        for name, values in series.items():
            row[name] = values[idx]
        rows.append(row)
    return {'columns': columns, 'rows': rows, 'summary': {'days': len(rows)}}


_BUILDERS = {
    'risk-summary': _risk_summary,
    'interventions': _interventions,
    'alerts': _alerts,
    'trends': _trends,
}


def generate_report(service, report_type: str, period: str = '1m') -> Dict[str, Any]:
    """
    Build one of the tabular reports over the given period.

    Raises:
        ValidationError: on an unknown report type or period
    """
    builder = _BUILDERS.get(report_type)
    if builder is None:
        raise ValidationError(f"Invalid report type '{report_type}'", details={'allowed': REPORT_TYPES})
    now = service.clock()
    since = now - parse_window(period)

    report = builder(service, since)
    logger.info("Generated %s report for period %s (%d rows)", report_type, period, len(report['rows']))
    report.update({'reportType': report_type, 'period': period, 'generatedAt': now.isoformat()})
    return report


def to_csv(report: Dict[str, Any]) -> str:
    """Render a report's rows as CSV text."""
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(report['columns'])
    for row in report['rows']:
        writer.writerow(['' if row.get(col) is None else row.get(col) for col in report['columns']])
    return output.getvalue()


def to_xlsx(report: Dict[str, Any]) -> bytes:
    """Render a report's rows as an Excel workbook."""
    df = pd.DataFrame(report['rows'], columns=report['columns'])
    output = BytesIO()
    df.to_excel(output, index=False, sheet_name=report['reportType'][:31], engine='openpyxl')
    return output.getvalue()
