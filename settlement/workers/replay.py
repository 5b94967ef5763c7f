"""
Replay of stored gateway notifications.

Feeds captured notification bodies through the webhook handler, e.g. after
an outage during which the gateway gave up redelivering. Replays are safe
to repeat since settlement is idempotent per order.
"""
import json
from pathlib import Path
from typing import Any, Dict, List

import structlog

from settlement.exceptions import SettlementError
from settlement.integrations.webhook_handler import WebhookHandler

logger = structlog.get_logger(__name__)


def load_notifications(path: Path) -> List[Dict[str, Any]]:
    """
    Load notification bodies from a file.

    Accepts a single JSON object, a JSON array of objects, or JSON lines.

    Raises:
        ValueError: If the file holds anything else
    """
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = [json.loads(line) for line in text.splitlines() if line.strip()]

    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(d, dict) for d in data):
        raise ValueError(f"{path} must contain JSON objects")
    return data


async def replay_notifications(
    handler: WebhookHandler, payloads: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """
    Replay notifications one at a time.

    Settlement errors are reported per notification and do not stop the run.

    Returns:
        One summary dict per payload, in input order
    """
    results: List[Dict[str, Any]] = []
    for index, payload in enumerate(payloads):
        try:
            result = await handler.handle(payload)
            results.append({"index": index, **result.to_dict()})
        except SettlementError as e:
            logger.warning(
                "replay_notification_failed",
                index=index,
                error_type=type(e).__name__,
                error=str(e),
            )
            results.append(
                {
                    "index": index,
                    "outcome": "error",
                    "error_type": type(e).__name__,
                    "message": str(e),
                }
            )

    logger.info(
        "replay_completed",
        total=len(results),
        failed=sum(1 for r in results if r["outcome"] == "error"),
    )
    return results
