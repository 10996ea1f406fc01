from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
import time
from .db import engine
from .models import Base
from .logger import logger
from .exceptions import (
    ContentHubError,
    contenthub_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from .routes import campaigns, image_jobs, translations
from .dependencies import get_generation_client
from .inference.generation_client import GenerationClient

app = FastAPI(
    title="Content Hub API",
    version="1.0.0",
    description="Job orchestration for translated pages, ad images and ad campaigns"
)

app.add_exception_handler(ContentHubError, contenthub_exception_handler)
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

app.include_router(image_jobs.router)
app.include_router(translations.router)
app.include_router(campaigns.router)

@app.on_event("startup")
async def startup():
    logger.info("Starting Content Hub API")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

@app.on_event("shutdown")
async def shutdown():
    logger.info("Shutting down Content Hub API")

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "service": "contenthub-backend"}

@app.get("/generation/credits")
async def generation_credits(generator: GenerationClient = Depends(get_generation_client)):
    """Remaining balance on the image generation account"""
    return {"balance": await generator.get_credits()}
