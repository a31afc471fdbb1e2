from __future__ import annotations
import logging
import os
from typing import Any, Dict

import requests

from app.utils.runtime_config import get_notify_webhook

logger = logging.getLogger(__name__)

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/")


def _webhook_send(payload: Dict[str, Any]) -> bool:
    """Webhook POST; never crash the API. Resolves the URL on every call."""
    url = get_notify_webhook()
    if not url:
        logger.info("notification webhook not set; skipping send")
        return False
    if "text" not in payload:
        payload = {**payload, "text": payload.get("fallback", "HR request notification")}
    try:
        r = requests.post(url, json=payload, timeout=10)
    except requests.RequestException as e:
        logger.warning("notification send error: %s", e)
        return False
    if r.status_code >= 300:
        logger.warning("notification webhook returned %s: %s", r.status_code, r.text[:300])
        return False
    logger.info("notification sent status=%s", r.status_code)
    return True


def notify_request_fulfilled(submission) -> bool:
    requester = submission.user
    type_name = submission.request_type.name if submission.request_type else "Request"
    return _webhook_send({
        "event": "request.fulfilled",
        "text": f"{type_name} {submission.reference_code} has been fulfilled.",
        "submission_id": submission.id,
        "reference_code": submission.reference_code,
        "request_type": type_name,
        "recipient": {
            "user_id": requester.id if requester else None,
            "email": requester.email if requester else None,
            "name": requester.name if requester else None,
        },
        "fulfilled_at": submission.fulfilled_at.isoformat() if submission.fulfilled_at else None,
        "url": f"{APP_BASE_URL}/api/requests/{submission.id}",
    })
