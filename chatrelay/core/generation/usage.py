"""Usage Snapshot: raw provider token counts enriched with catalog pricing."""

from typing import Any, Dict, List, Optional

import structlog
from tokencost import calculate_cost_by_tokens

logger = structlog.get_logger("chatrelay.usage")


def _catalog_names(provider_model: str) -> List[str]:
    # catalog keys carry no provider prefix ("openai/gpt-4o" -> "gpt-4o")
    names = [provider_model.lower()]
    if "/" in provider_model:
        names.append(provider_model.split("/", 1)[1].lower())
    return names


def build_usage_snapshot(
    raw_usage: Optional[Dict[str, Any]],
    model_id: str,
    provider_model: str,
) -> Dict[str, Any]:
    """
    Merge raw usage with pricing from the tokencost catalog.

    A catalog miss never fails the turn: the snapshot then holds the raw
    counts only.
    """
    snapshot: Dict[str, Any] = dict(raw_usage or {})
    snapshot["modelId"] = model_id
    snapshot["providerModel"] = provider_model

    prompt_tokens = int(snapshot.get("prompt_tokens") or 0)
    completion_tokens = int(snapshot.get("completion_tokens") or 0)
    if "total_tokens" not in snapshot:
        snapshot["total_tokens"] = prompt_tokens + completion_tokens

    last_error = ""
    for name in _catalog_names(provider_model):
        try:
            input_cost = calculate_cost_by_tokens(prompt_tokens, name, "input")
            output_cost = calculate_cost_by_tokens(completion_tokens, name, "output")
        except (KeyError, ValueError) as exc:
            last_error = str(exc)
            continue
        snapshot["costUSD"] = {
            "input": float(input_cost),
            "output": float(output_cost),
            "total": float(input_cost + output_cost),
        }
        return snapshot

    logger.warning("pricing_lookup_failed", model=provider_model, error=last_error)
    return snapshot
