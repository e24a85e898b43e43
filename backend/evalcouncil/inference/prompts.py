from __future__ import annotations

from typing import Any, Dict, List, Optional

AX_FACTORS: List[str] = [
    "Structured Data",
    "Semantic HTML",
    "Meta Tags Quality",
    "Content Accessibility",
    "API Availability",
    "Content Clarity",
    "Agent Interaction",
]

AX_RULE = (
    "You are an AI Agent Experience (AX) evaluator. Analyze the following website/product "
    "from the perspective of how easily AI agents can access, understand, and use the "
    "information on this website."
)

AX_RESPONSE_FORMAT = (
    "Respond in this exact JSON format:\n"
    "{\"axScore\": <number 0-100>, "
    "\"factors\": [{\"name\": \"<factor>\", \"score\": <number>, "
    "\"status\": \"<excellent|good|needs-improvement>\", \"description\": \"<brief description>\"}], "
    "\"agentAccessibility\": \"<2-3 sentences>\", "
    "\"recommendations\": [\"<recommendation>\", ...]}\n"
    "Return ONLY valid JSON, no markdown formatting or explanation text."
)


def _snapshot_lines(snapshot: Optional[Dict[str, Any]]) -> List[str]:
    if not snapshot:
        return []
    features = snapshot.get("keyFeatures") or []
    return [
        f"Product Name: {snapshot.get('productName') or 'Unknown'}",
        f"Description: {snapshot.get('description') or 'Not available'}",
        f"Key Features: {', '.join(str(f) for f in features) or 'Not available'}",
    ]


def build_subject_description(url: str, snapshot: Optional[Dict[str, Any]] = None) -> str:
    """Prompt text handed to every panelist for one evaluation."""
    factor_lines = [f"{i}. {name}" for i, name in enumerate(AX_FACTORS, start=1)]
    parts = [
        AX_RULE,
        "",
        f"Website URL: {url}",
        *_snapshot_lines(snapshot),
        "",
        "Evaluate the website on these factors, scoring each from 0-100:",
        *factor_lines,
        "",
        "For each factor give a score, a status (excellent 70-100, good 40-69, "
        "needs-improvement 0-39) and a brief description. Also give an overall AX score, "
        "a short agent accessibility analysis and 3-5 specific recommendations.",
        "",
        AX_RESPONSE_FORMAT,
    ]
    return "\n".join(parts)
