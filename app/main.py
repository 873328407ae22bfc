"""FastAPI application for the Student Risk Detection service."""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import config
from app.errors import InternalError, RiskServiceError, ValidationError
from app.models import AnalyzeRequest, BatchRequest, InterventionCreate, InterventionUpdate, PredictRequest
from app.reports import REPORT_FORMATS, generate_report, to_csv, to_xlsx
from app.service import RiskService

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, details=None) -> JSONResponse:
    content = {"success": False, "error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def _ok(data, **extra) -> dict:
    return {"success": True, "data": data, **extra}


@contextmanager
def error_boundary(message: str):
    """Translate unexpected failures into InternalError; typed errors pass through."""
    try:
        yield
    except RiskServiceError:
        raise
    except Exception as e:
        logger.exception(message)
        raise InternalError(message, details=str(e) if config.DEBUG else None) from e


def get_service(request: Request) -> RiskService:
    return request.app.state.service


def create_app(service: Optional[RiskService] = None) -> FastAPI:
    app = FastAPI(title="Student Risk Detection API", version=config.VERSION)
    app.state.service = service or RiskService()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RiskServiceError)
    async def risk_error_handler(request: Request, exc: RiskServiceError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error(exc.status_code, exc.message, exc.details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request", exc.errors())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal server error", str(exc) if config.DEBUG else None)

    @app.post("/analyze")
    def analyze(body: AnalyzeRequest, service: RiskService = Depends(get_service)):
        """Analyze one student's risk, reusing a recent assessment unless forced."""
        with error_boundary("Error en análisis de riesgos"):
            result = service.analyze(body.student_id, body.data, body.force_reanalysis)
        from_cache = result.pop("fromCache")
        analysis = result["analysis"]
        return _ok(
            result,
            fromCache=from_cache,
            metadata={
                "analysisId": analysis["id"],
                "timestamp": analysis["timestamp"],
                "confidence": analysis["confidence"],
                "factorsAnalyzed": analysis["factorsAnalyzed"],
            },
        )

    @app.post("/analyze-batch")
    def analyze_batch(body: BatchRequest, service: RiskService = Depends(get_service)):
        with error_boundary("Error en análisis masivo"):
            return _ok(service.analyze_batch(body.student_ids, body.data, body.criteria))

    @app.get("/alerts")
    def list_alerts(
        level: Optional[str] = None,
        type: Optional[str] = None,
        studentId: Optional[str] = None,
        limit: int = Query(50, ge=1, le=1000),
        service: RiskService = Depends(get_service),
    ):
        with error_boundary("Error obteniendo alertas"):
            return _ok(service.query_alerts(level=level, type=type, student_id=studentId, limit=limit))

    @app.post("/intervention")
    def create_intervention(body: InterventionCreate, service: RiskService = Depends(get_service)):
        with error_boundary("Error creando intervención"):
            intervention = service.create_intervention(body)
        return _ok(
            intervention.to_json(),
            message=f"Intervención {intervention.type} creada exitosamente",
            nextSteps=[
                "Notificar a los responsables asignados",
                "Establecer cronograma de seguimiento",
                "Documentar progreso inicial",
            ],
        )

    @app.put("/intervention/{intervention_id}")
    def update_intervention(
        intervention_id: str,
        body: InterventionUpdate,
        x_user_id: Optional[str] = Header(default=None),
        service: RiskService = Depends(get_service),
    ):
        with error_boundary("Error actualizando intervención"):
            intervention = service.update_intervention(intervention_id, body, author=x_user_id or "system")
        return _ok(intervention.to_json(), message="Intervención actualizada exitosamente")

    @app.get("/dashboard")
    def dashboard(timeframe: str = "7d", service: RiskService = Depends(get_service)):
        with error_boundary("Error en dashboard de riesgos"):
            data = service.dashboard(timeframe)
        return _ok(data, metadata={
            "timeframe": timeframe,
            "lastUpdate": datetime.now(timezone.utc).isoformat(),
        })

    @app.get("/student/{student_id}/profile")
    def student_profile(student_id: str, service: RiskService = Depends(get_service)):
        with error_boundary("Error obteniendo perfil de riesgo"):
            return _ok(service.student_profile(student_id))

    @app.post("/predict")
    def predict(body: PredictRequest, service: RiskService = Depends(get_service)):
        """Heuristic risk projection; the output is not authoritative."""
        with error_boundary("Error en predicción de riesgos"):
            return _ok(service.predict(body.criteria, body.time_horizon, body.confidence))

    @app.get("/reports/{report_type}")
    def export_report(
        report_type: str,
        format: str = "json",
        period: str = "1m",
        service: RiskService = Depends(get_service),
    ):
        """Export a report as JSON, CSV or Excel."""
        if format not in REPORT_FORMATS:
            raise ValidationError(f"Invalid format '{format}'", details={"allowed": REPORT_FORMATS})

        with error_boundary("Error generando reporte"):
            report = generate_report(service, report_type, period)

            if format == "csv":
                return StreamingResponse(
                    iter([to_csv(report)]),
                    media_type="text/csv",
                    headers={"Content-Disposition": f'attachment; filename="{report_type}-report.csv"'},
                )
            if format == "xlsx":
                return Response(
                    content=to_xlsx(report),
                    media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                    headers={"Content-Disposition": f'attachment; filename="{report_type}-report.xlsx"'},
                )

        metadata = {
            "reportType": report.pop("reportType"),
            "period": report.pop("period"),
            "generatedAt": report.pop("generatedAt"),
        }
        return _ok(report, metadata=metadata)

    @app.get("/config")
    def get_config(service: RiskService = Depends(get_service)):
        return _ok(service.config_snapshot())

    @app.get("/health")
    def health_check(service: RiskService = Depends(get_service)):
        """Liveness plus in-memory counts."""
        return _ok(service.health(), timestamp=datetime.now(timezone.utc).isoformat())

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
