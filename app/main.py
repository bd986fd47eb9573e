import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.http_hardening import install_http_hardening
from app.api.marketplace.router import router as marketplace_router
from app.api.admin.router import router as admin_router

_LOG = logging.getLogger("app.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    hub = getattr(app.state, "feed_hub", None)
    if hub is not None:
        hub.close()
        app.state.feed_hub = None


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_http_hardening(app)


def _jsonable_errors(errors) -> list[dict]:
    return [
        {"loc": [str(part) for part in item.get("loc", ())], "msg": str(item.get("msg") or ""), "type": item.get("type")}
        for item in errors
    ]


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = str(first.get("msg") or "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"detail": f"{field}: {message}" if field else message, "errors": _jsonable_errors(errors)},
    )


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    _LOG.exception("store unavailable path=%s", request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable"})


app.include_router(marketplace_router, prefix="/api")
app.include_router(admin_router, prefix="/api/admin")

@app.get("/", include_in_schema=False)
def landing():
    return JSONResponse({"service": settings.APP_NAME, "status": "ok"})

@app.get("/health")
def health():
    return {"status": "ok"}
