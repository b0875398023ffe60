from typing import Any

import requests

from core.config import Settings


def post_json(url: str, payload: Any, cfg: Settings, http: requests.Session | None = None) -> requests.Response:
    client = http or requests
    return client.post(
        url,
        json=payload,
        headers={"Content-Type": "application/json"},
        timeout=cfg.webhook_timeout_sec,
    )


def response_body(response: requests.Response) -> Any:
    """JSON body when the webhook sent JSON, otherwise the raw text."""
    try:
        return response.json()
    except ValueError:
        return response.text
