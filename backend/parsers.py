# parsers.py
"""Recover email drafts from free-form model output.

Models are asked for ``{"emails": [{"subject": ..., "body": ...}]}`` but
may wrap it in markdown fences, add commentary around it, or ignore the
format entirely. Recovery never raises: anything unusable becomes a single
draft carrying the raw text.
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, List, Optional

PLACEHOLDER_SUBJECT = "Quick intro"

FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?([\s\S]*?)```", re.I)

# ----------------------------
# Candidate selection
# ----------------------------
def fenced_candidate(text: str) -> str:
    """Inner content of the first fenced block, else the whole text."""
    m = FENCE_RE.search(text or "")
    return m.group(1).strip() if m else (text or "")

# ----------------------------
# Parse strategies (tried in order on the candidate)
# ----------------------------
def parse_brace_span(candidate: str) -> Optional[Any]:
    """Parse from the first '{' to the last '}'."""
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        return json.loads(candidate[start : end + 1])
    except ValueError:
        return None


def parse_whole(candidate: str) -> Optional[Any]:
    try:
        return json.loads(candidate.strip())
    except ValueError:
        return None


PARSE_STRATEGIES: List[Callable[[str], Optional[Any]]] = [
    parse_brace_span,
    parse_whole,
]


def recover_json(text: str) -> Optional[Dict[str, Any]]:
    candidate = fenced_candidate(text)
    for strategy in PARSE_STRATEGIES:
        data = strategy(candidate)
        if isinstance(data, dict):
            return data
    return None

# ----------------------------
# Drafts
# ----------------------------
def _draft_from_entry(entry: Any) -> Optional[Dict[str, Any]]:
    if isinstance(entry, str) and entry.strip():
        return {"subject": PLACEHOLDER_SUBJECT, "body": entry}
    if isinstance(entry, dict) and isinstance(entry.get("body"), str) and entry["body"].strip():
        draft = dict(entry)
        if not isinstance(draft.get("subject"), str) or not draft["subject"].strip():
            draft["subject"] = PLACEHOLDER_SUBJECT
        return draft
    return None


def fallback_drafts(text: str) -> List[Dict[str, Any]]:
    return [{"subject": PLACEHOLDER_SUBJECT, "body": text}]


def recover_emails(text: str) -> List[Dict[str, Any]]:
    data = recover_json(text)
    entries = data.get("emails") if data else None
    if not isinstance(entries, list):
        return fallback_drafts(text)
    drafts = [d for d in (_draft_from_entry(e) for e in entries) if d]
    return drafts or fallback_drafts(text)


def recover_from_completions(texts: List[str], limit: int) -> List[Dict[str, Any]]:
    """Recover every completion and keep at most ``limit`` drafts."""
    out: List[Dict[str, Any]] = []
    for text in texts:
        out.extend(recover_emails(text))
    return out[:limit]
