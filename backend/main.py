from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import Session
from sqlalchemy import text, inspect
from pydantic import BaseModel
from datetime import datetime
import logging, os, time

# Import our modules
from app.core.database import get_db, engine, Base
from app.core.errors import NotAuthorizedError, NotFoundError, WorkflowValidationError
from app.core.security import create_access_token, create_refresh_token, decode_token, ACCESS_TTL_MIN
from app.deps.auth import get_current_user, require_permission
from app.metrics import init_metrics_zero, request_latency_seconds
from app.models import User
from app.models.org import MANAGE_REQUESTS
from app.utils.policy import reload_policy, explain_policy
from app.utils.runtime_config import set_notify_webhook, get_notify_webhook
from app.api import dashboard, leaves, org, request_types, requests as requests_api, trainings

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("app")

logger.info("database engine url=%s type=%s", engine.url.render_as_string(hide_password=True), engine.name)

# FastAPI app
app = FastAPI(
    title="HR Request Workflow API",
    description="Dynamic HR requests with multi-step approvals, trainings and leave",
    version="0.3.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)

@app.middleware("http")
async def latency_middleware(request: Request, call_next):
    started = time.perf_counter()
    try:
        return await call_next(request)
    finally:
        request_latency_seconds.observe(time.perf_counter() - started)

@app.on_event("startup")
def on_startup():
    logger.info("creating tables on startup")
    Base.metadata.create_all(bind=engine)
    logger.info("tables now: %s", inspect(engine).get_table_names())
    init_metrics_zero()

app.include_router(org.router)
app.include_router(request_types.router)
app.include_router(requests_api.router)
app.include_router(trainings.router)
app.include_router(leaves.router)
app.include_router(dashboard.router)


# ---- error mapping

@app.exception_handler(WorkflowValidationError)
async def workflow_validation_handler(request: Request, exc: WorkflowValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})

@app.exception_handler(NotAuthorizedError)
async def not_authorized_handler(request: Request, exc: NotAuthorizedError):
    return JSONResponse(status_code=403, content={"detail": str(exc) or "Forbidden"})

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc) or "Not found"})

@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "database": "connected",
            "users_count": db.query(User).count(),
            "tables": inspect(engine).get_table_names(),
            "timestamp": datetime.now()
        }
    except Exception as e:
        logger.warning("health check failed: %s", e)
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
            "timestamp": datetime.now()
        }

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ---- auth

class LoginIn(BaseModel):
    email: str

@app.post("/auth/login")
def auth_login(body: LoginIn, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == body.email.strip().lower()).first()
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown account")
    roles = [r.name for r in user.roles]
    access = create_access_token(user.id, roles)
    refresh = create_refresh_token(user.id, roles)
    return {"access_token": access, "refresh_token": refresh, "token_type": "bearer",
            "expires_in": ACCESS_TTL_MIN * 60, "user_id": user.id, "roles": roles}

class RefreshIn(BaseModel):
    refresh_token: str

@app.post("/auth/refresh")
def auth_refresh(body: RefreshIn):
    try:
        data = decode_token(body.refresh_token, expected_type="refresh")
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid/expired refresh token")
    new_access = create_access_token(int(data["sub"]), data.get("roles") or [])
    return {"access_token": new_access, "token_type": "bearer", "expires_in": ACCESS_TTL_MIN * 60}


# ---- policy + runtime config

@app.get("/api/policy", response_model=dict)
def api_policy(user=Depends(get_current_user)):
    return explain_policy()

@app.post("/api/policy/reload", response_model=dict)
def api_policy_reload(user=Depends(require_permission(MANAGE_REQUESTS))):
    p = reload_policy()
    logger.info("workflow policy reloaded by user %s", user.id)
    return {"status": "reloaded", "sections": sorted(p.keys())}

class NotificationWebhookIn(BaseModel):
    webhook_url: str

@app.post("/config/notification-webhook", response_model=dict)
def api_set_notification_webhook(body: NotificationWebhookIn, user=Depends(require_permission(MANAGE_REQUESTS))):
    url = body.webhook_url.strip()
    if url and not url.startswith(("https://", "http://")):
        raise HTTPException(status_code=400, detail="Invalid webhook URL")
    set_notify_webhook(url)
    return {"saved": True, "configured": bool(url)}

@app.get("/config/notification-webhook", response_model=dict)
def api_get_notification_webhook(user=Depends(require_permission(MANAGE_REQUESTS))):
    val = get_notify_webhook()
    masked = (val[:20] + "...") if val else None
    return {"configured": bool(val), "webhook_url_preview": masked}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
