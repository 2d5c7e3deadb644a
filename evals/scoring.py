"""Deterministic scoring functions attached to correctness prompts.

Each scorer maps the raw model output to 0 or 1 and handles its own
parse failures by scoring 0.
"""

import json
import logging
import re
from typing import Protocol

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?```$", re.DOTALL)


class Scorer(Protocol):
    def __call__(self, output: str) -> int:
        ...


def strip_code_fence(output: str) -> str:
    """Remove a single surrounding markdown code fence, if present."""
    text = output.strip()
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text


def score_kth_largest(output: str) -> int:
    code = output.lower()
    has_heap_import = "import heapq" in code or "from heapq" in code
    has_function = "def find_kth_largest" in code
    has_heap_push = "heappush" in code or "heapify" in code
    has_correct_logic = "heappop" in code or "nlargest" in code

    return int(has_heap_import and has_function and (has_heap_push or has_correct_logic))


def score_log_parse(output: str) -> int:
    try:
        parsed = json.loads(strip_code_fence(output))
    except (ValueError, TypeError):
        return 0
    if not isinstance(parsed, dict):
        return 0

    timestamp = parsed.get("timestamp")
    message = parsed.get("message")
    has_timestamp = isinstance(timestamp, str) and "2024-03-15" in timestamp
    has_level = parsed.get("level") == "ERROR"
    has_message = isinstance(message, str) and "payment" in message
    has_request_id = parsed.get("request_id") == "req_abc123"

    return int(has_timestamp and has_level and has_message and has_request_id)


def score_factorial_fix(output: str) -> int:
    code = output.lower()
    # n = 0 must become a comparison, factorial(n) must recurse on n - 1
    has_equality_fix = any(s in code for s in ("== 0", "=== 0", "<= 0", "< 1"))
    has_recursion_fix = any(s in code for s in ("factorial(n-1)", "factorial(n - 1)", "factorial(--n)"))

    return int(has_equality_fix and has_recursion_fix)


def score_train_distance(output: str) -> int:
    # 240 / 60 = 4h out, 240 / 40 = 6h back
    return int(output.strip() == "240")
