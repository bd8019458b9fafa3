from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from tenantdesk.core import config
from tenantdesk.core.database.engine import engine, init_db
from tenantdesk.core.ratelimit import limiter
from tenantdesk.features.organizations.routes import router as organization_router
from tenantdesk.features.permissions.routes import router as permission_router
from tenantdesk.features.service_requests.routes import router as service_request_router
from tenantdesk.features.sessions.routes import router as session_router
from tenantdesk.features.users.routes import router as user_router
from tenantdesk.utils import get_logger


log = get_logger(__name__)
log.info("Starting TenantDesk API")
app = FastAPI(
    title="TenantDesk",
    description="Multi-tenant service request API: organizations, memberships, "
                "per-session active organization and merged capability checks",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


class LogTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        route = metric_name.removeprefix("tenantdesk.features.")
        log.debug("%s took %.4fs %s", route, timing, tags)


app.add_middleware(TimingMiddleware, client=LogTimings(), metric_namer=StarletteScopeToName("tenantdesk", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("CORS allow origin: %s", config.ALLOW_ORIGIN)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.ALLOW_ORIGIN],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    """Flatten validation errors to {field: message} and answer 400."""
    errors = {}
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        field = error["loc"][-1] if error["loc"] else "root"
        errors["root" if field == "__root__" else field] = error["msg"]
    log.info("Rejected request: %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    # unique constraints lost to a concurrent writer (slug, membership)
    log.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=409, content={"detail": "Conflicts with existing data"})


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"detail": "Too many requests, slow down"}, status_code=429)


@app.on_event("startup")
async def startup():
    log.info("Creating missing tables")
    await init_db()


@app.get("/")
async def root():
    """Service banner."""
    return {
        "name": "TenantDesk API",
        "version": "0.1.0",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "public_endpoints": ["/", "/health", "/permissions/statements"],
    }


@app.get("/health")
async def health():
    """Liveness plus a database round trip."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return {"status": "healthy"}


app.include_router(user_router, prefix="/users", tags=["users"])
app.include_router(session_router, prefix="/sessions", tags=["sessions"])
app.include_router(organization_router, prefix="/organizations", tags=["organizations"])
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
app.include_router(service_request_router, prefix="/service-requests", tags=["service-requests"])
