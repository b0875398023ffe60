import asyncio
import logging

import requests
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from api.deps import SettingsDep
from services.webhook_service import relay

logger = logging.getLogger(__name__)

router = APIRouter()


async def _relay(url: str, request: Request, cfg) -> Response:
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Request body must be JSON"}, status_code=400)
    try:
        status_code, data = await asyncio.to_thread(relay, url, body, cfg)
    except requests.RequestException as exc:
        logger.error("Error forwarding to webhook %s: %s", url, exc)
        return JSONResponse({"error": "Failed to reach n8n webhook"}, status_code=502)
    if isinstance(data, str):
        return PlainTextResponse(data, status_code=status_code)
    return JSONResponse(data, status_code=status_code)


@router.post("/patient-query")
async def patient_query(request: Request, cfg: SettingsDep):
    return await _relay(cfg.webhook_url, request, cfg)


@router.post("/patient-query-test")
async def patient_query_test(request: Request, cfg: SettingsDep):
    return await _relay(cfg.webhook_test_url, request, cfg)
