import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from mlchat.core.config import CORS_ALLOWED_HEADERS, settings

# Import models so they register with SQLAlchemy metadata before mappers configure.
from mlchat.models.profile import Profile  # noqa: F401
from mlchat.models.chat_message import ChatMessage  # noqa: F401
from mlchat.models.payment_intent import PaymentIntentRecord  # noqa: F401

from mlchat.routes.billing import router as billing_router
from mlchat.routes.chat import router as chat_router
from mlchat.routes.profile import router as profile_router
from mlchat.routes.stripe_webhook import router as stripe_webhook_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="ML Chat")
logger.info(
    "Startup config: ENV=%s provider=%s charge_mode=%s stripe_enabled=%s",
    settings.ENV,
    settings.GENERATION_PROVIDER,
    settings.CREDIT_CHARGE_MODE,
    settings.stripe_enabled,
)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    402: "PAYMENT_REQUIRED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
}


def _error_code(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    detail = exc.detail
    message = detail if isinstance(detail, str) and detail else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message, "code": _error_code(exc.status_code)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content={
            "error": "Invalid request payload",
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "An error occurred", "code": "INTERNAL_ERROR"})


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=CORS_ALLOWED_HEADERS,
)

app.include_router(chat_router)
app.include_router(profile_router)
app.include_router(billing_router)
app.include_router(stripe_webhook_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}
