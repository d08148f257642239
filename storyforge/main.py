import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from storyforge.core.config import settings
from storyforge.core.errors import DomainError
from storyforge.database import dispose_db, init_db
from storyforge.api.v1.endpoints import providers, stories

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup and shutdown events.
    """
    # Startup
    logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    await init_db()

    yield

    # Shutdown
    await dispose_db()

app = FastAPI(title="StoryForge", lifespan=lifespan)

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """
    Maps domain errors raised by the services to their HTTP status and error body.
    """
    if exc.status_code >= 500:
        logging.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())

# Include API routers
app.include_router(stories.router, prefix="/api/v1", tags=["stories"])
app.include_router(providers.router, prefix="/api/v1", tags=["providers"])
