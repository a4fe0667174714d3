from __future__ import annotations

from typing import Any, Dict, Optional

import json

import httpx

from dispute_manager.config import settings
from dispute_manager.utils.logger import logger


FALLBACK_TEXT = "Failed to generate response"

SYSTEM_PROMPT = (
    "You are a chargeback dispute response expert. "
    "Generate professional, persuasive dispute responses."
)

_PROMPT_TEMPLATE = """You are a chargeback dispute response expert. Generate a professional, persuasive dispute response based on the following information:

Dispute ID: {dispute_id}
Order: {order_name}
Customer Email: {customer_email}
Status: {status}
Reason: {reason}
Chargeback Reason: {chargeback_reason}
Amount: {currency} {amount}

Additional Details:
{raw_payload}

Generate a clear, professional dispute response that:
1. Addresses the specific chargeback reason
2. Provides relevant evidence and context
3. Is professional and persuasive
4. Follows best practices for chargeback disputes

Response:"""


class AiDraftError(RuntimeError):
    """Raised when a dispute draft cannot be requested from the AI provider."""


def _or_na(value: Any) -> Any:
    return value if value else "N/A"


def build_prompt(details: Dict[str, Any]) -> str:
    return _PROMPT_TEMPLATE.format(
        dispute_id=details.get("shopify_dispute_id"),
        order_name=_or_na(details.get("order_name")),
        customer_email=_or_na(details.get("customer_email")),
        status=_or_na(details.get("status")),
        reason=_or_na(details.get("reason")),
        chargeback_reason=_or_na(details.get("chargeback_reason")),
        currency=details.get("currency") or "",
        amount=_or_na(details.get("amount")),
        raw_payload=json.dumps(details.get("raw_payload"), indent=2, default=str),
    )


def _upstream_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:500] or "Unknown error"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return json.dumps(body)


async def generate_dispute_response(details: Dict[str, Any], *, model: Optional[str] = None) -> str:
    """Draft a merchant response for one dispute.

    ``details`` carries the dispute fields by their column names
    (``shopify_dispute_id``, ``order_name``, ``amount``, ``raw_payload``...).
    Returns the completion text, or ``FALLBACK_TEXT`` when the provider
    answers with no choices.
    """

    api_key = settings.OPENAI_API_KEY
    if not api_key:
        raise AiDraftError(
            "OPENAI_API_KEY environment variable is not set. "
            "Configure it in the environment or the .env file."
        )

    base_url = settings.OPENAI_API_BASE_URL.rstrip("/")
    payload: Dict[str, Any] = {
        "model": model or settings.OPENAI_MODEL,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(details)},
        ],
        "temperature": settings.OPENAI_TEMPERATURE,
        "max_tokens": settings.OPENAI_MAX_TOKENS,
    }

    url = f"{base_url}/v1/chat/completions"
    try:
        async with httpx.AsyncClient(timeout=60.0) as client:
            resp = await client.post(
                url,
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                json=payload,
            )
    except httpx.HTTPError as exc:
        logger.error("AI draft request failed: %s", exc)
        raise AiDraftError(f"Failed to contact AI provider: {exc}") from exc

    if resp.status_code >= 400:
        logger.error("AI draft provider HTTP %s: %s", resp.status_code, resp.text[:500])
        raise AiDraftError(f"OpenAI API error: {_upstream_message(resp)}")

    data = resp.json() or {}
    choices = data.get("choices") or []
    if not choices:
        return FALLBACK_TEXT
    content = (choices[0].get("message") or {}).get("content")
    return content or FALLBACK_TEXT
