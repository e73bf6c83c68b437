"""Deterministic responses used when neither network nor cache can answer."""

from __future__ import annotations

from typing import Any, Optional

import httpx

OFFLINE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Offline</title>
  <style>
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
           margin: 0; padding: 2rem; text-align: center; background: #f5f5f5; }
    .container { max-width: 400px; margin: 2rem auto; padding: 2rem; background: white;
                 border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); }
    h1 { color: #333; }
    p { color: #666; line-height: 1.5; }
  </style>
</head>
<body>
  <div class="container">
    <h1>You're Offline</h1>
    <p>Your inspection data is safe and will sync when you're back online.</p>
    <p><a href="/">Try Again</a></p>
  </div>
</body>
</html>
"""


def offline_page(request: httpx.Request) -> httpx.Response:
    """HTML offline document for navigations (status 200)."""
    return httpx.Response(
        200,
        headers={"content-type": "text/html; charset=utf-8"},
        text=OFFLINE_HTML,
        request=request,
    )


def offline_api_response(
    request: httpx.Request,
    queued_id: Optional[int] = None,
) -> httpx.Response:
    """JSON envelope for API calls (status 503).

    Args:
        queued_id: Set when the request was accepted into the offline
            mutation queue; reported back as ``queued`` / ``queueId``.
    """
    body: dict[str, Any] = {
        "error": "Network unavailable",
        "message": "This request will be retried when you come back online"
        if queued_id is not None
        else "You are offline and no cached copy is available",
        "offline": True,
    }
    if queued_id is not None:
        body["queued"] = True
        body["queueId"] = queued_id
    return httpx.Response(503, json=body, request=request)


def service_unavailable(request: httpx.Request) -> httpx.Response:
    """Generic plain-text 503 of last resort."""
    return httpx.Response(
        503,
        headers={"content-type": "text/plain"},
        text="Service Unavailable",
        request=request,
    )
