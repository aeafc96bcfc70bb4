# server.py
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .db import engine, init_models
from .designs import router as designs_router
from .errors import FulfillmentError
from .orders import router as orders_router
from .orders import webhook_router
from .settings import settings

# --- Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger(__name__)

# --- App Initialization ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Order fulfillment API for Chaos Stickers: Stripe payments to Printify orders.",
    version=__version__,
)

# --- CORS Middleware ---
origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Database Startup Event ---
@app.on_event("startup")
async def on_startup():
    """Create database tables on startup."""
    await init_models(engine)
    log.info("Database tables verified/created.")


@app.on_event("shutdown")
async def on_shutdown():
    await engine.dispose()


# --- Error Handlers ---
# Every error body is `{"error": "<message>"}`.

@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed with {type(exc).__name__}: {exc.message}")
    else:
        log.warning(f"{request.method} {request.url.path} rejected with {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    messages = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": messages})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception(f"{request.method} {request.url.path} failed with unhandled {type(exc).__name__}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Routes ---

@app.get("/api/health")
async def health():
    return {"status": "ok", "message": "API is running"}


app.include_router(webhook_router, prefix=settings.API_PREFIX)
app.include_router(orders_router, prefix=settings.API_PREFIX)
app.include_router(designs_router, prefix=settings.API_PREFIX)
