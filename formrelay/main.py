from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from formrelay.api.v1 import contact
from formrelay.core.config import settings
from formrelay.core.errors import register_exception_handlers
from formrelay.core.logging import setup_logging
from formrelay.core.middleware import RequestIdMiddleware, SecurityHeadersMiddleware

# Setup logging
logger = setup_logging()


tags_metadata = [
    {
        "name": "contact",
        "description": "**Contact** - Public contact form relay: validation shared with the browser, per-submitter rate limit, mail dispatch.",
    },
    {
        "name": "health",
        "description": "Service liveness and version metadata.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("startup", project=settings.PROJECT_NAME, version=settings.VERSION)
    logger.info("environment", environment=settings.ENVIRONMENT, debug=settings.DEBUG)
    logger.info("contact_config_path", path=settings.CONTACT_CONFIG_PATH)

    yield

    logger.info("shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## formrelay

Receives contact form submissions, validates them with the same rules the
browser runs, applies a per-submitter hourly limit and relays them by mail.
    """,
    openapi_tags=tags_metadata,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.add_middleware(SecurityHeadersMiddleware)

# Request ID tracing
app.add_middleware(RequestIdMiddleware)

# Register global exception handlers
register_exception_handlers(app)

app.include_router(contact.router, prefix=settings.API_V1_PREFIX, tags=["contact"])


@app.get(
    "/health",
    tags=["health"],
    summary="Health check",
    description="Returns service health metadata for monitoring and uptime checks.",
)
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("formrelay.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
