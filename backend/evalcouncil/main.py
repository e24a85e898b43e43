from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
import time
from .db import engine, AsyncSessionLocal
from .models import Base
from .logger import logger
from .schemas import HealthResponse, VersionResponse
from .services import model_configs
from .routes import admin, ax, credits, evaluations, payments, promotions
from .exceptions import (
    EvalCouncilError,
    evalcouncil_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)

VERSION = "1.0.0"

app = FastAPI(
    title="Evaluation Council API",
    version=VERSION,
    description="Product evaluation jobs, AX panel consensus and credit metering",
)

app.add_exception_handler(EvalCouncilError, evalcouncil_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    logger.info(
        f"Request: {request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
        }
    )

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        f"Response: {response.status_code}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
    )

    return response

app.include_router(evaluations.router)
app.include_router(ax.router)
app.include_router(credits.router)
app.include_router(promotions.router)
app.include_router(payments.router)
app.include_router(admin.router)

@app.on_event("startup")
async def startup():
    logger.info("Starting Evaluation Council API")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
        async with AsyncSessionLocal() as session:
            await model_configs.seed_default_models(session)
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

@app.on_event("shutdown")
async def shutdown():
    logger.info("Shutting down Evaluation Council API")
    await engine.dispose()

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(status="ok")

@app.get("/version", response_model=VersionResponse)
async def version():
    return VersionResponse(version=VERSION)
