"""
REST API Module: HTTP Endpoints for the Administrative Interface
Rule management, event intake, alert history, confirmations and metrics.
"""
import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from auth import Token, TokenData, create_access_token, get_current_user, require_admin, verify_password
from config import load_config
from exceptions import (
    ConfigError,
    DuplicateRuleError,
    HomeGuardError,
    InvalidEventError,
    RuleNotFoundError,
    StoreUnavailableError
)
from main import HomeGuardSystem
from metrics import MetricsCollector
from rules_engine.actions import ConfirmationStatus
from rules_engine.parser import TRIGGER_TEMPLATES, template_to_definition


logger = logging.getLogger("HomeGuardAPI")


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    components: Dict[str, str]


class MetricsResponse(BaseModel):
    """Metrics summary response."""
    counters: Dict[str, int]
    gauges: Dict[str, float]
    timers: Dict[str, Dict[str, float]]


class RuleListResponse(BaseModel):
    total: int
    rules: List[Dict[str, Any]]


class RuleTestRequest(BaseModel):
    """Raw event to test a rule against."""
    event: Dict[str, Any]


class FromTemplateRequest(BaseModel):
    template: str = Field(..., description="Template name, e.g. 'VEXOR Warning'")
    rule_id: Optional[str] = None
    overrides: Dict[str, Any] = Field(default_factory=dict)


class DeviceRegisterRequest(BaseModel):
    device_id: str
    name: str = ""
    device_type: str = "sensor"
    capabilities: List[str] = Field(default_factory=list)


class MonitoringRequest(BaseModel):
    monitoring: bool


class DecisionRequest(BaseModel):
    comment: Optional[str] = None


# -------------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------------

def get_system(request: Request) -> HomeGuardSystem:
    system = getattr(request.app.state, "system", None)
    if system is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="System not initialized"
        )
    return system


router = APIRouter()


# -------------------------------------------------------------------------
# Health Check Endpoints
# -------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Liveness probe."""
    system = getattr(request.app.state, "system", None)
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=system.config.system.version if system else "unknown",
        components={
            "api": "up",
            "system": "up" if system else "down",
            "loop": system.loop.state.value if system else "down"
        }
    )


@router.get("/health/ready", response_model=HealthResponse, tags=["Health"])
def readiness_check(system: HomeGuardSystem = Depends(get_system)):
    """Readiness probe: the database answers."""
    try:
        with system.db_manager.connection() as conn:
            conn.execute("SELECT 1").fetchone()
    except HomeGuardError as e:
        logger.error(f"Database check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database not ready: {e.message}"
        )

    return HealthResponse(
        status="ready",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=system.config.system.version,
        components={"api": "ready", "database": "ready", "loop": system.loop.state.value}
    )


# -------------------------------------------------------------------------
# Authentication Endpoints
# -------------------------------------------------------------------------

@router.post("/api/v1/auth/token", response_model=Token, tags=["Authentication"])
async def login_for_access_token(request: Request, system: HomeGuardSystem = Depends(get_system)):
    """
    Exchange the admin credentials for a bearer token.

    Accepts JSON or ``application/x-www-form-urlencoded``.
    """
    content_type = request.headers.get("content-type", "")

    if "application/json" in content_type:
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        username = payload.get("username")
        password = payload.get("password")
    else:
        form = parse_qs((await request.body()).decode("utf-8"))
        username = form.get("username", [None])[0]
        password = form.get("password", [None])[0]

    if not username or not password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="username and password are required",
        )

    api_config = system.config.api
    if username != api_config.admin_username or not verify_password(password, api_config.admin_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token({"sub": username, "adm": True}, system.config)
    return Token(access_token=access_token, token_type="bearer")


# -------------------------------------------------------------------------
# Rule Endpoints
# -------------------------------------------------------------------------

@router.get("/api/v1/rules", response_model=RuleListResponse, tags=["Rules"])
def list_rules(
    enabled: Optional[bool] = Query(None, description="Filter by enabled flag"),
    condition_type: Optional[str] = Query(None, description="face, behavior, time or device"),
    tag: Optional[str] = Query(None),
    system: HomeGuardSystem = Depends(get_system)
):
    try:
        rules = system.store.list(enabled=enabled, condition_type=condition_type, tag=tag)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown condition type: {condition_type}"
        )
    return RuleListResponse(total=len(rules), rules=[r.to_dict() for r in rules])


@router.post("/api/v1/rules", status_code=status.HTTP_201_CREATED, tags=["Rules"])
def create_rule(
    definition: Dict[str, Any] = Body(...),
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(require_admin)
):
    """
    Create a rule. Accepts the flat rule shape or the trigger shape with a
    nested ``condition`` object.
    """
    rule_id = system.store.add(definition)
    rule = system.store.get(rule_id)
    logger.info(f"Rule {rule_id} created by {user.username}")
    return {"rule": rule.to_dict(), "validation": system.parser.validate_rule(rule).model_dump()}


@router.get("/api/v1/rules/templates", tags=["Rules"])
async def list_templates():
    """Ready-made triggers."""
    return {"templates": TRIGGER_TEMPLATES}


@router.post("/api/v1/rules/from-template", status_code=status.HTTP_201_CREATED, tags=["Rules"])
def create_rule_from_template(
    request: FromTemplateRequest,
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(require_admin)
):
    definition = template_to_definition(request.template, request.rule_id, request.overrides)
    rule_id = system.store.add(definition)
    logger.info(f"Rule {rule_id} created from template '{request.template}' by {user.username}")
    return {"rule": system.store.get(rule_id).to_dict()}


@router.post("/api/v1/rules/validate", tags=["Rules"])
def validate_rule(definition: Dict[str, Any] = Body(...), system: HomeGuardSystem = Depends(get_system)):
    """Validate a definition without storing it."""
    return system.store.validate(definition).model_dump()


@router.get("/api/v1/rules/summary", tags=["Rules"])
def get_rules_summary(system: HomeGuardSystem = Depends(get_system)):
    return system.engine.get_summary()


@router.post("/api/v1/rules/reload", tags=["Rules"])
def reload_rules(system: HomeGuardSystem = Depends(get_system), user: TokenData = Depends(require_admin)):
    """Reload every rule from the persistence store."""
    snapshot = system.store.refresh()
    return {
        "message": "Rules reloaded successfully",
        "total_rules": len(snapshot),
        "version": snapshot.version,
        "load_errors": [e.to_dict() for e in system.store.load_errors]
    }


@router.get("/api/v1/rules/{rule_id}", tags=["Rules"])
def get_rule(rule_id: str, system: HomeGuardSystem = Depends(get_system)):
    return system.store.get(rule_id).to_dict()


@router.patch("/api/v1/rules/{rule_id}", tags=["Rules"])
def update_rule(
    rule_id: str,
    patch: Dict[str, Any] = Body(...),
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(require_admin)
):
    return system.store.update(rule_id, patch).to_dict()


@router.delete("/api/v1/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Rules"])
def delete_rule(
    rule_id: str,
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(require_admin)
):
    system.store.remove(rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/v1/rules/{rule_id}/enable", tags=["Rules"])
def enable_rule(rule_id: str, system: HomeGuardSystem = Depends(get_system), user: TokenData = Depends(require_admin)):
    rule = system.store.set_enabled(rule_id, True)
    return {"message": f"Rule {rule_id} enabled", "rule": rule.to_dict()}


@router.post("/api/v1/rules/{rule_id}/disable", tags=["Rules"])
def disable_rule(rule_id: str, system: HomeGuardSystem = Depends(get_system), user: TokenData = Depends(require_admin)):
    rule = system.store.set_enabled(rule_id, False)
    return {"message": f"Rule {rule_id} disabled", "rule": rule.to_dict()}


@router.post("/api/v1/rules/{rule_id}/test", tags=["Rules"])
def test_rule(rule_id: str, request: RuleTestRequest, system: HomeGuardSystem = Depends(get_system)):
    """
    Test a rule against an event without dispatching anything.
    """
    event = system.normalizer.normalize(request.event)
    result = system.engine.test_rule(rule_id, event)
    return {"event": event.to_dict(), **result.to_dict()}


# -------------------------------------------------------------------------
# Event Endpoints
# -------------------------------------------------------------------------

@router.post("/api/v1/events", status_code=status.HTTP_202_ACCEPTED, tags=["Events"])
async def submit_event(
    raw: Dict[str, Any] = Body(...),
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(get_current_user)
):
    """
    Queue an event for evaluation. Returns 429 when the queue is full.
    """
    event = system.normalizer.normalize(raw)
    if not system.loop.submit(event):
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"queued": False, "event_id": event.id, "message": "Evaluation queue full, event dropped"}
        )
    return {"queued": True, "event_id": event.id, "queue_depth": system.loop.queue_depth}


@router.post("/api/v1/events/evaluate", tags=["Events"])
async def evaluate_event(
    raw: Dict[str, Any] = Body(...),
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(get_current_user)
):
    """Evaluate an event immediately and return the full report."""
    report = await system.evaluate_raw(raw)
    return report.to_dict()


@router.get("/api/v1/events/recent", tags=["Events"])
async def recent_reports(
    limit: int = Query(default=20, ge=1, le=100),
    system: HomeGuardSystem = Depends(get_system)
):
    reports = list(system.loop.recent_reports)[-limit:]
    return {"reports": [r.to_dict() for r in reversed(reports)]}


# -------------------------------------------------------------------------
# Device Endpoints
# -------------------------------------------------------------------------

@router.get("/api/v1/devices", tags=["Devices"])
def list_devices(system: HomeGuardSystem = Depends(get_system)):
    registry = system.device_registry
    return {
        "devices": [
            {**d.to_dict(), "alive": registry.is_alive(d.device_id)}
            for d in registry.list_devices()
        ]
    }


@router.post("/api/v1/devices", status_code=status.HTTP_201_CREATED, tags=["Devices"])
def register_device(
    request: DeviceRegisterRequest,
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(require_admin)
):
    record = system.device_registry.register(
        request.device_id,
        name=request.name,
        device_type=request.device_type,
        capabilities=request.capabilities
    )
    return record.to_dict()


@router.post("/api/v1/devices/{device_id}/heartbeat", tags=["Devices"])
def device_heartbeat(
    device_id: str,
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(get_current_user)
):
    if not system.device_registry.heartbeat(device_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown device: {device_id}")
    return {"device_id": device_id, "alive": True}


@router.post("/api/v1/devices/{device_id}/monitoring", tags=["Devices"])
def set_device_monitoring(
    device_id: str,
    request: MonitoringRequest,
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(require_admin)
):
    """Pause or resume monitoring; a paused device never counts as alive."""
    if not system.device_registry.set_monitoring(device_id, request.monitoring):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown device: {device_id}")
    return system.device_registry.get(device_id).to_dict()


# -------------------------------------------------------------------------
# Alert Endpoints
# -------------------------------------------------------------------------

@router.get("/api/v1/alerts", tags=["Alerts"])
def get_alerts(
    limit: int = Query(default=50, ge=1, le=500),
    rule_id: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    system: HomeGuardSystem = Depends(get_system)
):
    alerts = system.historian.get_recent_alerts(limit=limit, rule_id=rule_id, severity=severity)
    return {"total": len(alerts), "alerts": [a.to_dict() for a in alerts]}


@router.get("/api/v1/alerts/{alert_id}", tags=["Alerts"])
def get_alert(alert_id: str, system: HomeGuardSystem = Depends(get_system)):
    alert = system.historian.get_alert(alert_id)
    if alert is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Alert not found: {alert_id}")
    return alert.to_dict()


# -------------------------------------------------------------------------
# Confirmation Endpoints
# -------------------------------------------------------------------------

@router.get("/api/v1/approvals", tags=["Approvals"])
async def list_approvals(
    pending_only: bool = Query(True),
    system: HomeGuardSystem = Depends(get_system)
):
    gate = system.confirmation_gate
    tokens = gate.pending() if pending_only else gate.list_tokens()
    return {"approvals": [t.to_dict() for t in tokens]}


@router.post("/api/v1/approvals/{token_id}/approve", tags=["Approvals"])
async def approve_action(
    token_id: str,
    request: DecisionRequest = Body(default_factory=DecisionRequest),
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(require_admin)
):
    """Approve a held action; it is carried out immediately."""
    token = await system.approve_confirmation(token_id, user.username, request.comment)
    if token is None:
        raise _not_pending(system, token_id)
    return token.to_dict()


@router.post("/api/v1/approvals/{token_id}/reject", tags=["Approvals"])
async def reject_action(
    token_id: str,
    request: DecisionRequest = Body(default_factory=DecisionRequest),
    system: HomeGuardSystem = Depends(get_system),
    user: TokenData = Depends(require_admin)
):
    token = system.reject_confirmation(token_id, user.username, request.comment)
    if token is None:
        raise _not_pending(system, token_id)
    return token.to_dict()


def _not_pending(system: HomeGuardSystem, token_id: str) -> HTTPException:
    token = system.confirmation_gate.get(token_id)
    if token is None:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Approval not found: {token_id}")
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Approval {token_id} is {token.status.value}, not {ConfirmationStatus.PENDING.value}"
    )


# -------------------------------------------------------------------------
# Status & Metrics Endpoints
# -------------------------------------------------------------------------

@router.get("/api/v1/status", tags=["Status"])
async def get_status(system: HomeGuardSystem = Depends(get_system)):
    return system.get_status()


@router.get("/api/v1/config", tags=["Configuration"])
async def get_config(system: HomeGuardSystem = Depends(get_system)):
    """Current configuration without secrets."""
    return system.config.to_dict()


@router.get("/api/v1/metrics", response_model=MetricsResponse, tags=["Metrics"])
async def get_metrics(system: HomeGuardSystem = Depends(get_system)):
    summary = system.get_metrics_summary()
    return MetricsResponse(
        counters=summary.get("counters", {}),
        gauges=summary.get("gauges", {}),
        timers=summary.get("timers", {})
    )


@router.get("/metrics", response_class=PlainTextResponse, tags=["Metrics"])
async def prometheus_metrics():
    """Prometheus text exposition."""
    return MetricsCollector().export_prometheus()


# -------------------------------------------------------------------------
# Error Handlers
# -------------------------------------------------------------------------

ERROR_STATUS = {
    ConfigError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidEventError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DuplicateRuleError: status.HTTP_409_CONFLICT,
    RuleNotFoundError: status.HTTP_404_NOT_FOUND,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    HomeGuardError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def homeguard_error_handler(request: Request, exc: HomeGuardError):
    """Map domain errors to HTTP status codes."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            status_code = ERROR_STATUS[error_type]
            break

    if status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.to_dict()}")
    else:
        logger.info(f"{type(exc).__name__}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "component": exc.component,
            "context": exc.context
        }
    )


async def general_error_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(f"Unexpected error: {exc}")
    logger.error(traceback.format_exc())
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "InternalServerError", "message": str(exc)}
    )


# -------------------------------------------------------------------------
# FastAPI Application
# -------------------------------------------------------------------------

def create_app(system: Optional[HomeGuardSystem] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        system: Pre-built system (tests); one is built from the environment at startup otherwise
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_system = app.state.system is None
        logger.info("Starting HomeGuard API...")
        if owns_system:
            app.state.system = HomeGuardSystem(load_config())
        await app.state.system.start()
        logger.info("HomeGuard API started successfully")

        yield

        logger.info("Shutting down HomeGuard API...")
        await app.state.system.stop()
        if owns_system:
            app.state.system.shutdown()
            app.state.system = None
        logger.info("HomeGuard API shutdown complete")

    cors_origins = system.config.api.cors_origins if system else load_config().api.cors_origins

    app = FastAPI(
        title="HomeGuard API",
        description="Rules engine for smart-home security triggers",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(HomeGuardError, homeguard_error_handler)
    app.add_exception_handler(Exception, general_error_handler)
    app.include_router(router)
    return app


app = create_app()
