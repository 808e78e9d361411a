import inspect
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from openai import AsyncOpenAI

from dal.dataset_store import DatasetStore
from routes.analysis_route import router as analysis_router
from routes.batch_route import router as batch_router
from routes.batch_ws import router as batch_ws_router
from routes.dataset_route import router as dataset_router
from services.batch.batch_processor import BatchProcessor
from services.batch.batch_registry import BatchRegistry
from services.batch.retry import RetryPolicy
from services.dataset.packager import DatasetPackager
from services.openai.image_analyzer import ImageAnalyzer
from utils.settings import load_settings

from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file if present

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - settings and the dataset directory
      - the OpenAI async client and image analyzer
      - the packager, dataset store, batch processor and batch registry
    and attach them to `app.state`.
    """
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings.ensure_directories()
    app.state.settings = settings

    if not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is not set")

    try:
        # Retries are handled by RetryPolicy so they stay cancellable.
        openai_client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout,
            max_retries=0,
        )
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc

    app.state.openai_client = openai_client
    app.state.analyzer = ImageAnalyzer(
        openai_client,
        temperature=settings.analysis_temperature,
        seed=settings.analysis_seed,
        timeout=settings.openai_timeout,
    )
    app.state.retry_policy = RetryPolicy(
        max_attempts=settings.analysis_max_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )
    app.state.dataset_store = DatasetStore(settings.dataset_dir)
    app.state.processor = BatchProcessor(
        app.state.analyzer,
        DatasetPackager(settings.work_dir),
        app.state.dataset_store,
        retry_policy=app.state.retry_policy,
        failure_policy=settings.failure_policy,
        max_images=settings.max_batch_images,
    )
    app.state.batch_registry = BatchRegistry(
        app.state.processor,
        finished_ttl=settings.batch_ttl_seconds,
        max_finished=settings.max_finished_batches,
    )
    LOGGER.info(
        "Dataset generator ready (model=%s, datasets=%s, failure_policy=%s)",
        settings.default_model, settings.dataset_dir, settings.failure_policy,
    )

    try:
        yield
    finally:
        await app.state.batch_registry.shutdown()
        # Gracefully close the OpenAI client if it exposes a close/aclose method.
        client = getattr(app.state, "openai_client", None)
        if client is not None:
            aclose = getattr(client, "aclose", None) or getattr(client, "close", None)
            if aclose is not None:
                try:
                    if inspect.iscoroutinefunction(aclose):
                        await aclose()
                    else:
                        result = aclose()
                        if inspect.isawaitable(result):
                            await result
                except Exception as exc:
                    LOGGER.warning("Error closing OpenAI client: %s", exc)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)

    @app.get("/api/health")
    async def health(request: Request):
        """
        Simple health check that reports the OpenAI client and dataset directory.
        """
        settings = getattr(request.app.state, "settings", None)
        has_openai = (
            hasattr(request.app.state, "openai_client")
            and request.app.state.openai_client is not None
        )
        return {
            "ok": True,
            "openai_available": has_openai,
            "default_model": settings.default_model if settings else None,
            "dataset_dir": str(settings.dataset_dir) if settings else None,
        }

    # Register application routers
    app.include_router(analysis_router)
    app.include_router(batch_router)
    app.include_router(dataset_router)
    app.include_router(batch_ws_router)

    return app


app = create_app()
