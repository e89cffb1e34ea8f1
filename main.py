"""
Student Portal Auth Backend - FastAPI application
Main entry point: storage composition, background OTP sweep and routing setup
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from routes.auth_routes import profile_router, router as auth_router, session_router
from services.auth_service import CredentialService, hash_password, make_password_context
from services.cipher import EmailCipher
from services.email_service import EmailService
from services.errors import PortalError
from services.otp_service import OtpSweeper
from services.session_service import SessionService
from services.storage import AdminSeed, RecordStore, build_record_store

logger = logging.getLogger(__name__)


def admin_seed_from_config() -> AdminSeed:
    password_hash = config.ADMIN_PASSWORD_HASH
    if not password_hash:
        password_hash = hash_password(config.ADMIN_PASSWORD, make_password_context(config.BCRYPT_ROUNDS))
    return AdminSeed(
        email=config.ADMIN_EMAIL,
        username=config.ADMIN_USERNAME,
        full_name=config.ADMIN_FULL_NAME,
        password_hash=password_hash,
    )


def build_default_store() -> RecordStore:
    # raises EncryptionKeyError when ENCRYPTION_KEY is missing: no encrypted fields, no service
    cipher = EmailCipher.from_base64(config.ENCRYPTION_KEY)
    return build_record_store(
        cipher,
        config.DATA_DIR,
        use_mongodb=config.USE_MONGODB,
        mongodb_uri=config.MONGODB_URI,
        mongodb_database=config.MONGODB_DATABASE,
        mongodb_timeout_ms=config.MONGODB_TIMEOUT_MS,
        admin_seed=admin_seed_from_config(),
    )


def create_app(
    store: Optional[RecordStore] = None,
    mailer=None,
    sessions: Optional[SessionService] = None,
    run_sweeper: bool = True,
) -> FastAPI:
    store = store or build_default_store()
    mailer = mailer or EmailService()
    sessions = sessions or SessionService(config.AUTH_SECRET, expire_minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    credentials = CredentialService(
        store,
        mailer,
        sessions,
        allowed_domain=config.ALLOWED_EMAIL_DOMAIN,
        min_password_length=config.MIN_PASSWORD_LENGTH,
        otp_expiry_minutes=config.OTP_EXPIRY_MINUTES,
        bcrypt_rounds=config.BCRYPT_ROUNDS,
    )
    sweeper = OtpSweeper(store, interval_seconds=config.OTP_CLEANUP_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if run_sweeper:
            await sweeper.start()
        yield
        if run_sweeper:
            await sweeper.stop()

    app = FastAPI(
        title="Student Portal Auth API",
        description="Account lifecycle, OTP verification and password recovery for the student portal",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.credentials = credentials
    app.state.sweeper = sweeper

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
    app.include_router(profile_router, prefix="/api/user", tags=["Profile"])
    app.include_router(session_router, prefix="/api", tags=["Auth"])

    @app.get("/ping")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "service": "student-portal-auth",
        }

    @app.exception_handler(PortalError)
    async def portal_error_handler(request, exc: PortalError):
        if exc.status_code >= 500:
            logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request, exc: RequestValidationError):
        """Report the first schema problem as a 400, like the policy checks"""
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = first.get("msg", "Invalid request")
        return JSONResponse(
            status_code=400,
            content={"message": f"{field}: {message}" if field else message},
        )

    @app.exception_handler(404)
    async def not_found_handler(request, exc):
        """Custom 404 handler"""
        return JSONResponse(
            status_code=404,
            content={"message": "Endpoint not found", "path": str(request.url)},
        )

    @app.exception_handler(500)
    async def internal_error_handler(request, exc):
        """Custom 500 handler"""
        return JSONResponse(
            status_code=500,
            content={"message": "Internal server error"},
        )

    return app


app = create_app()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=False,
        log_level="info",
    )
