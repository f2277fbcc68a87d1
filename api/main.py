"""
FastAPI Application: REST surface of the prompt queue.

Provides:
- queue listing, statistics and health
- enqueue with an explicit/default delay or from a rate-limit message
- process now, force deliver, remove, purge
- rate-limit message parsing (no side effects)

The processor runs inside the application lifespan.
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import Any, Optional

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from config.log_setup import configure_logging
from config.settings import get_settings
from core.engine import DeliveryEngine, RateLimitNotDetected
from utils.ratelimit import parse_rate_limit_message
from utils.timeutils import format_display_time

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class EnqueueRequest(BaseModel):
    prompt_text: str
    delay_hours: Optional[float] = None
    origin_context: str = ""


class RateLimitedEnqueueRequest(BaseModel):
    prompt_text: str
    message: str = ""
    override_delay_hours: Optional[float] = None
    origin_context: str = ""


class ParseRequest(BaseModel):
    text: str


def _item_view(item) -> dict[str, Any]:
    data = item.to_record()
    data["notBeforeDisplay"] = format_display_time(item.not_before)
    return data


def _engine(request: Request) -> DeliveryEngine:
    return request.app.state.engine


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

def create_app(engine: Optional[DeliveryEngine] = None) -> FastAPI:
    """Build the API around an engine (built from settings when omitted)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is None:
            settings = get_settings()
            configure_logging(settings.log_level)
            app.state.engine = DeliveryEngine.from_settings(settings)
        else:
            app.state.engine = engine
        await app.state.engine.start()
        logger.info("prompt_queue_started", sink=app.state.engine.sink.name)
        yield
        await app.state.engine.stop()
        logger.info("prompt_queue_stopped")

    app = FastAPI(
        title="Prompt Queue API",
        description="Deferred prompt delivery with rate-limit detection",
        version="1.0.0",
        lifespan=lifespan,
    )

    # ══════════════════════════════════════════════════════════
    #  HEALTH & STATS
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health(request: Request):
        return {"status": "ok", **_engine(request).health()}

    @app.get("/api/v1/queue/stats")
    async def queue_stats(request: Request):
        return await _engine(request).stats()

    # ══════════════════════════════════════════════════════════
    #  QUEUE
    # ══════════════════════════════════════════════════════════

    @app.get("/api/v1/queue")
    async def list_queue(request: Request, pending_only: bool = False):
        engine_ = _engine(request)
        items = await (engine_.list_pending() if pending_only else engine_.list_items())
        return {"items": [_item_view(i) for i in items], "count": len(items)}

    @app.post("/api/v1/queue", status_code=201)
    async def enqueue(req: EnqueueRequest, request: Request):
        try:
            item = await _engine(request).enqueue(req.prompt_text, req.delay_hours, req.origin_context)
        except ValueError as e:
            raise HTTPException(422, str(e))
        return _item_view(item)

    @app.post("/api/v1/queue/rate-limited", status_code=201)
    async def enqueue_rate_limited(req: RateLimitedEnqueueRequest, request: Request):
        try:
            item, info = await _engine(request).enqueue_rate_limited(
                req.prompt_text, req.message, req.override_delay_hours, req.origin_context,
            )
        except RateLimitNotDetected as e:
            raise HTTPException(422, f"Rate limit not detected: {e}")
        except ValueError as e:
            raise HTTPException(422, str(e))
        return {"item": _item_view(item), "rate_limit": info.model_dump(mode="json")}

    @app.post("/api/v1/queue/process")
    async def process_now(request: Request):
        delivered = await _engine(request).process_now()
        return {"delivered": delivered}

    @app.post("/api/v1/queue/purge")
    async def purge(request: Request):
        removed = await _engine(request).purge_processed()
        return {"removed": removed}

    @app.post("/api/v1/queue/{item_id}/deliver")
    async def force_deliver(item_id: str, request: Request):
        engine_ = _engine(request)
        if await engine_.get(item_id) is None:
            raise HTTPException(404, "Item not found")
        if not await engine_.force_deliver(item_id):
            raise HTTPException(409, "Item not delivered")
        return {"status": "delivered", "item_id": item_id}

    @app.delete("/api/v1/queue/{item_id}")
    async def remove(item_id: str, request: Request):
        if not await _engine(request).remove(item_id):
            raise HTTPException(404, "Item not found")
        return {"status": "removed", "item_id": item_id}

    # ══════════════════════════════════════════════════════════
    #  RATE-LIMIT PARSING
    # ══════════════════════════════════════════════════════════

    @app.post("/api/v1/rate-limit/parse")
    async def parse(req: ParseRequest, request: Request):
        info = parse_rate_limit_message(req.text)
        return {
            "detected": info is not None,
            "rate_limit": info.model_dump(mode="json") if info else None,
            "suggested_delay_hours": _engine(request).suggest_delay(req.text),
        }

    return app


app = create_app()
