# rest2mqtt/api/discovery.py
"""
Root-level landing page and liveness probe. Neither is rate limited.
"""
from __future__ import annotations

from functools import lru_cache
from importlib import resources

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, PlainTextResponse

HEALTHZ_PATH = "/healthz"

router = APIRouter()


@lru_cache()
def banner() -> str:
    return (resources.files("rest2mqtt") / "static" / "banner.html").read_text("utf-8")


@router.get("/", response_class=HTMLResponse)
async def index() -> HTMLResponse:
    return HTMLResponse(banner())


@router.get(HEALTHZ_PATH, response_class=PlainTextResponse)
async def healthz(request: Request) -> PlainTextResponse:
    broker = request.app.state.broker
    if broker.is_connected:
        return PlainTextResponse("OK")
    return PlainTextResponse("NOT CONNECTED", status_code=500)
