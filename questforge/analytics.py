"""Completion metrics for QuestForge, sent to Datadog.

Fail-open: metric failures are logged but never block the player.
"""

import logging
import time

import requests

logger = logging.getLogger(__name__)

DATADOG_API_URL = "https://api.datadoghq.com/api/v1/series"
COMPLETION_METRIC = "questforge.completion"
REQUEST_TIMEOUT_SECONDS = 5


def _completion_series(kind: str, category: str) -> dict:
    return {
        "metric": COMPLETION_METRIC,
        "type": "count",
        "points": [[int(time.time()), 1]],
        "tags": [f"kind:{kind}", f"category:{category}"],
    }


def send_completion_metric(kind: str, category: str, datadog_api_key: str) -> bool:
    """Count one completion in Datadog.

    Args:
        kind: What was completed ("quest", "task", "flavor_task" or "boss_attack")
        category: Stat category credited (strength, intelligence, soul)
        datadog_api_key: API key; an empty key disables metrics

    Returns:
        Whether Datadog accepted the point
    """
    if not datadog_api_key:
        return False

    label = f"{kind}/{category}"
    try:
        response = requests.post(
            DATADOG_API_URL,
            json={"series": [_completion_series(kind, category)]},
            headers={"Content-Type": "application/json", "DD-API-KEY": datadog_api_key},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.error(f"Datadog rejected completion metric {label}: {e}")
        return False
    except Exception as e:
        logger.error(f"Unexpected error sending completion metric {label}: {e}")
        return False

    logger.info(f"Sent completion metric {label}")
    return True
