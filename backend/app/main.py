import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import CORS_ORIGINS
from app.exceptions import ChatServiceError
from app.routers import chat

# ── Logging setup ─────────────────────────────────────────────────────────────
# Always configure a stdout handler so logs appear in the local terminal.
# On Cloud Run (K_SERVICE is set), additionally route to Cloud Logging.
import os

class _ExtraFormatter(logging.Formatter):
    """Formatter that appends extra={} fields to the log line for local visibility."""
    _BASE_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__)

    def format(self, record):
        msg = super().format(record)
        extras = {k: v for k, v in record.__dict__.items()
                  if k not in self._BASE_ATTRS and k not in ("message", "asctime")}
        if extras:
            msg += f" | {extras}"
        return msg

_handler = logging.StreamHandler()
_handler.setFormatter(_ExtraFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
logging.root.setLevel(logging.INFO)
logging.root.addHandler(_handler)

if os.environ.get("K_SERVICE"):
    # Running on Cloud Run: also send structured logs to Cloud Logging
    try:
        import google.cloud.logging
        cloud_logging_client = google.cloud.logging.Client()
        cloud_logging_client.setup_logging()
    except Exception as e:
        logging.warning("cloud_logging_setup_failed: %s", e)

logger = logging.getLogger(__name__)

# ── App ────────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="Estate Chat API",
    description="Real estate assistant chat: streams Gemini replies over SSE and keeps transcripts in Firestore.",
    version="1.0.0",
)

# ── CORS ───────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ────────────────────────────────────────────────────────────────────
app.include_router(chat.router, prefix="/api/chat", tags=["chat"])

# ── Exception handlers ─────────────────────────────────────────────────────────
@app.exception_handler(ChatServiceError)
async def chat_service_error_handler(request: Request, exc: ChatServiceError):
    logger.error(
        "request_failed",
        extra={
            "path": request.url.path,
            "method": request.method,
            "code": exc.code,
            "error": str(exc),
        },
    )
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "code": exc.code},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error": str(exc),
            "type": type(exc).__name__,
        },
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. It has been logged."},
    )

# ── Health check ───────────────────────────────────────────────────────────────
@app.get("/health", tags=["health"])
def health():
    """Used by Cloud Run health checks."""
    return {"status": "ok"}


logger.info("estate_chat_api_started", extra={"cors_origins": CORS_ORIGINS})
