import logging
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.core.dependencies import AdminAuthError, require_admin_token, require_internal_token
from app.core.rate_limit import limiter
from app.database.supabase_client import SupabaseClient
from app.modules.auth.service import clear_auth_cache
from app.modules.products.csv_import import reset_column_cache
from app.modules.zoho.token_manager import clear_token_cache
from app.modules.auth import routes as auth_routes
from app.modules.otp import routes as otp_routes
from app.modules.two_factor import routes as two_factor_routes
from app.modules.notifications import routes as notifications_routes
from app.modules.offers import routes as offers_routes
from app.modules.pricing import routes as pricing_routes
from app.modules.products import routes as products_routes
from app.modules.orders import routes as orders_routes
from app.modules.payments import routes as payments_routes
from app.modules.settings import routes as settings_routes
from app.modules.users import routes as users_routes
from app.modules.zoho import routes as zoho_routes

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    retry_after = exc.limit.limit.get_expiry()
    return JSONResponse(
        status_code=429,
        content={"detail": exc.detail, "retry_after": retry_after},
        headers={"Retry-After": str(retry_after)}
    )


@app.exception_handler(AdminAuthError)
async def admin_auth_exception_handler(request: Request, exc: AdminAuthError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


class SecurityHeadersMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].extend([
                    (b"X-Content-Type-Options", b"nosniff"),
                    (b"X-Frame-Options", b"DENY"),
                    (b"Referrer-Policy", b"strict-origin-when-cross-origin"),
                ])
            await send(message)

        await self.app(scope, receive, send_with_headers)


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include module routes
for module in (
    auth_routes,
    otp_routes,
    two_factor_routes,
    notifications_routes,
    offers_routes,
    pricing_routes,
    products_routes,
    orders_routes,
    payments_routes,
    settings_routes,
    users_routes,
    zoho_routes,
):
    app.include_router(module.router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info(f"Application startup ({settings.environment})")
    if not settings.is_supabase_configured:
        logger.warning("Supabase is not configured; data endpoints will fail")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Application shutdown")


@app.get("/")
async def root():
    return {"message": "Welcome to the TecBunny Store API", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness check: the service is ready once Supabase credentials are present."""
    if not settings.is_supabase_configured:
        return JSONResponse(status_code=503, content={"status": "not_ready", "reason": "supabase_not_configured"})
    return {"status": "ready"}


@app.get("/api/v1/admin/env-check", dependencies=[Depends(require_admin_token)])
async def env_check():
    """Which integrations have credentials; values are never echoed"""
    return {
        "environment": settings.environment,
        "supabase": settings.is_supabase_configured,
        "supabase_service_role": bool(settings.supabase_service_role_key),
        "smtp": bool(settings.smtp_host),
        "sms": bool(settings.twofactor_api_key),
        "whatsapp": bool(settings.superfone_api_key),
        "zoho": bool(settings.zoho_client_id and settings.zoho_organization_id),
    }


@app.post("/api/v1/admin/cache/clear", dependencies=[Depends(require_internal_token)])
async def clear_caches():
    """Drop process-local caches (auth tokens, products columns, Zoho token, Supabase clients)"""
    clear_auth_cache()
    reset_column_cache()
    clear_token_cache()
    SupabaseClient.reset_client()
    logger.info("Process caches cleared")
    return {"message": "Caches cleared"}
