import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aibos.app.api.v1.api import api_router
from aibos.app.core.config import settings
from aibos.app.core.errors import register_exception_handlers
from aibos.app.core.logging_config import configure_logging
from aibos.app.middleware.request_id import RequestIDMiddleware
from aibos.app.middleware.security import SecurityHeadersMiddleware

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

# ─── CORS: configured origins only ───────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Idempotency-Key",
        "X-Tenant-Id",
        "X-Company-Id",
        "X-Request-ID",
    ],
    expose_headers=["Content-Disposition", "X-Request-ID", "Idempotent-Replayed"],
)

# ─── Custom middleware (outermost executes first) ─────────────────────────────
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)

register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok"}
