from __future__ import annotations

import json
import math
import re
from typing import Any, Dict

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import OpinionParseError
from ..schemas import AXOpinion

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.I)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def extract_json(text: str) -> str:
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    m = re.search(r"\{.*\}", cleaned, re.S)
    if not m:
        raise OpinionParseError("No JSON object found in model response")
    return m.group(0).strip()


def anps_from_score(ax_score: int) -> int:
    """
    Banded ANPS: 75-100 promoter (+50..+100), 50-74 passive (-10..+49),
    0-49 detractor (-100..-11).
    """
    if ax_score >= 75:
        return _round_half_up(50 + ((ax_score - 75) / 25) * 50)
    if ax_score >= 50:
        return _round_half_up(-10 + ((ax_score - 50) / 25) * 59)
    return _round_half_up(-100 + (ax_score / 50) * 89)


def anps_category(anps: float) -> str:
    if anps >= 50:
        return "Promoter"
    if anps >= -10:
        return "Passive"
    return "Detractor"


def _coerce_number(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise OpinionParseError(f"Field '{field}' must be a number")
    return _round_half_up(value)


def parse_opinion(raw: str) -> AXOpinion:
    """
    Turn a panelist's raw text into a validated opinion. Any shape mismatch raises
    OpinionParseError; nothing partial is returned.
    """
    try:
        data = json.loads(extract_json(raw))
    except json.JSONDecodeError as e:
        raise OpinionParseError(f"Invalid JSON in model response: {e.msg}")

    if not isinstance(data, dict):
        raise OpinionParseError("Model response is not a JSON object")
    if "axScore" not in data:
        raise OpinionParseError("Model response is missing 'axScore'")

    payload: Dict[str, Any] = dict(data)
    payload["axScore"] = _coerce_number(data["axScore"], "axScore")
    if data.get("anps") is None:
        payload["anps"] = anps_from_score(payload["axScore"])
    else:
        payload["anps"] = _coerce_number(data["anps"], "anps")

    factors = data.get("factors") or []
    if not isinstance(factors, list):
        raise OpinionParseError("Field 'factors' must be a list")
    payload["factors"] = [
        {**f, "score": _coerce_number(f.get("score"), "factors.score")} if isinstance(f, dict) else f
        for f in factors
    ]
    payload["recommendations"] = data.get("recommendations") or []
    payload["agentAccessibility"] = data.get("agentAccessibility") or ""

    try:
        return AXOpinion.model_validate(payload)
    except PydanticValidationError as e:
        raise OpinionParseError(f"Model response has an unexpected shape: {e.error_count()} error(s)")
