import logging
from contextlib import asynccontextmanager
from functools import partial
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.models import catalog
from app.models.database import init_db
from app.config import settings
from fastapi.middleware.cors import CORSMiddleware
from app.api.router import router
from app.errors import MarketplaceError
from app.services.llm.factory import build_provider

log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
logging.getLogger("app").setLevel(log_level)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("google.genai").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup: create tables, build the language-model backend
    await init_db(settings.SQLITE_DB_PATH)
    app.state.provider = build_provider(
        settings,
        embedding_sink=partial(catalog.save_product_embeddings, settings.SQLITE_DB_PATH),
    )
    logger.info(f"Using {app.state.provider.name} provider")
    yield
    # shutdown: cleanup resources
    await app.state.provider.close()

app = FastAPI(
    title="Marketplace Shopping Assistant",
    description="Chat assistant that proposes shopping carts and assembles them from the catalog once confirmed.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
