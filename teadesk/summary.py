from __future__ import annotations

import json
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional

import httpx

from teadesk.schemas import UNKNOWN_NAME, ConsumptionRecord, Employee, TallyResult

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
FALLBACK_INSIGHT = "Unable to generate insights at this time."
EMPTY_INSIGHT = "No insights generated."

PROMPT = """Analyze the following office tea/snack consumption data and provide a brief, professional executive summary (max 3 sentences).
Highlight any unusual spikes in snacks or significant tally adjustments where the company paid for more tea than was actually consumed to match the employee count.

Data: {data}
"""


def top_consumers(
    consumptions: Iterable[ConsumptionRecord], employees: Iterable[Employee], limit: int = 3
) -> list[dict]:
    names = {employee.id: employee.name for employee in employees}
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for record in consumptions:
        totals[names.get(record.employee_id, UNKNOWN_NAME)] += record.amount
    ranked = sorted(totals.items(), key=lambda pair: pair[1], reverse=True)[:limit]
    return [{"name": name, "total": float(total)} for name, total in ranked]


def build_summary_data(
    consumptions: list[ConsumptionRecord],
    employees: list[Employee],
    tallies: Iterable[TallyResult] = (),
) -> dict:
    ordered = sorted(consumptions, key=lambda record: record.timestamp.isoformat())
    return {
        "totalConsumptionCount": len(consumptions),
        "dateRange": {
            "start": ordered[0].timestamp.isoformat() if ordered else None,
            "end": ordered[-1].timestamp.isoformat() if ordered else None,
        },
        "tallyAdjustments": [
            {
                "date": tally.day.isoformat() if tally.day else None,
                "gapFilled": tally.gap_filled,
                "finalCost": float(tally.company_cost),
            }
            for tally in tallies
        ],
        "topConsumers": top_consumers(consumptions, employees),
    }


def generate_weekly_insight(
    consumptions: Iterable[ConsumptionRecord],
    employees: Iterable[Employee],
    tallies: Iterable[TallyResult] = (),
    *,
    api_key: str,
    model: str = "gemini-2.5-flash",
    client: Optional[httpx.Client] = None,
    timeout: float = 30.0,
) -> str:
    """Ask Gemini for a short summary of the period.

    Never raises: any failure, including a missing API key, yields
    ``FALLBACK_INSIGHT``.
    """
    if not api_key:
        logger.warning("Gemini API key not configured, skipping insight")
        return FALLBACK_INSIGHT

    data = build_summary_data(list(consumptions), list(employees), tallies)
    body = {"contents": [{"parts": [{"text": PROMPT.format(data=json.dumps(data, indent=2))}]}]}
    owns_client = client is None
    http = client or httpx.Client(timeout=timeout)
    try:
        response = http.post(
            GEMINI_URL.format(model=model),
            headers={"x-goog-api-key": api_key},
            json=body,
        )
        response.raise_for_status()
        payload = response.json()
        parts = payload["candidates"][0]["content"]["parts"]
        text = "".join(part.get("text", "") for part in parts).strip()
        return text or EMPTY_INSIGHT
    except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
        logger.error("Gemini API error: %s", exc)
        return FALLBACK_INSIGHT
    finally:
        if owns_client:
            http.close()
