import logging
import traceback
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from watermark_proxy.config import Settings, configure_logging
from watermark_proxy.errors import InvalidRequest, RemovalError
from watermark_proxy.kv import open_kv_store
from watermark_proxy.providers import (
    ImageRemovalProvider,
    build_providers,
    decode_image,
    remove_with_fallback,
)
from watermark_proxy.schemas import ErrorResponse, ProviderStatus, RemovalRequest, Statistics
from watermark_proxy.statistics import StatisticsStore, last_seven_days

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(PACKAGE_DIR / "templates"))

PROVIDER_LABELS: dict[str, dict[str, str]] = {
    "gemini": {"label": "Google Gemini", "role": "primary"},
    "openai": {"label": "OpenAI", "role": "fallback"},
}


def _error_response(exc: Exception) -> JSONResponse:
    details = exc.details if isinstance(exc, RemovalError) and exc.details else None
    if details is None:
        details = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    body = ErrorResponse(error=str(exc) or "Unknown error", details=details)
    return JSONResponse(status_code=500, content=body.model_dump())


@asynccontextmanager
async def lifespan(app: FastAPI):
    load_dotenv()
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    kv = open_kv_store(settings.stats_kv_url)
    app.state.statistics = StatisticsStore(kv)
    app.state.providers = build_providers(settings)
    logger.info("Configured providers: %s", settings.configured_providers())
    try:
        yield
    finally:
        await kv.close()


def get_statistics_store(request: Request) -> StatisticsStore:
    return request.app.state.statistics


def get_providers(request: Request) -> list[ImageRemovalProvider]:
    return request.app.state.providers


app = FastAPI(title="Watermark Proxy", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _record(step: Callable[[], Awaitable[None]], outcome: str) -> None:
    try:
        await step()
    except Exception:
        logger.error("Failed to record %s in statistics", outcome, exc_info=True)


@app.post("/api/remove-watermark")
async def remove_watermark(
    request: Request,
    statistics: StatisticsStore = Depends(get_statistics_store),
    providers: list[ImageRemovalProvider] = Depends(get_providers),
) -> Response:
    context: dict[str, Any] = {}
    try:
        await statistics.record_received()

        payload = RemovalRequest.model_validate(await request.json())
        image = payload.image
        if image is None or not image.data:
            logger.warning("Missing required image: has_image=%s", image is not None)
            raise InvalidRequest("Image is required")

        context = {
            "mime_type": image.mime_type,
            "data_length": len(image.data),
            "removal_text": payload.removal_text,
        }
        logger.info("Processing image: %s", context)

        provider_name, image_b64 = await remove_with_fallback(providers, image, payload.removal_text)
        content = decode_image(image_b64)
    except Exception as exc:
        kind = exc.kind if isinstance(exc, RemovalError) else "unexpected-error"
        logger.error("Error in /api/remove-watermark (%s): %s %s", kind, exc, context, exc_info=True)
        await _record(statistics.record_failure, "failure")
        return _error_response(exc)

    # A statistics outage never turns a produced image into an error.
    await _record(statistics.record_success, "success")
    logger.info("Created processed image: size=%d provider=%s", len(content), provider_name)
    return Response(content=content, media_type="image/png")


@app.get("/api/stats", response_model=Statistics)
async def get_stats(statistics: StatisticsStore = Depends(get_statistics_store)) -> Any:
    try:
        stats = await statistics.get()
    except Exception as exc:
        logger.error("Error reading statistics: %s", exc, exc_info=True)
        return _error_response(exc)
    return JSONResponse(content=stats.model_dump(by_alias=True))


@app.get("/api/providers")
async def get_provider_status(
    providers: list[ImageRemovalProvider] = Depends(get_providers),
) -> dict[str, Any]:
    result = {}
    for provider in providers:
        provider_id = provider.name.lower()
        labels = PROVIDER_LABELS.get(provider_id, {"label": provider.name, "role": "fallback"})
        status = ProviderStatus(
            label=labels["label"],
            role=labels["role"],
            model=provider.model,
            has_key=provider.configured,
        )
        result[provider_id] = status.model_dump(by_alias=True)
    return {"providers": result}


@app.get("/")
async def root(
    request: Request,
    statistics: StatisticsStore = Depends(get_statistics_store),
) -> Response:
    try:
        stats = await statistics.get()
        today = statistics.today().isoformat()
        days = last_seven_days(statistics.today())
        return templates.TemplateResponse(
            request,
            "status.html",
            {
                "stats": stats,
                "today": today,
                "today_stats": stats.daily_stats.get(today),
                "days": [(day, stats.daily_stats.get(day)) for day in days],
            },
        )
    except Exception as exc:
        logger.error("Error rendering status page: %s", exc, exc_info=True)
        return PlainTextResponse(f"Error loading statistics: {exc}", status_code=500)


app.mount("/static", StaticFiles(directory=str(PACKAGE_DIR / "static")), name="static")
