"""The prompt catalog, versioned and loaded as a single immutable unit."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from .scoring import (
    Scorer,
    score_factorial_fix,
    score_kth_largest,
    score_log_parse,
    score_train_distance,
)


class PromptType(str, Enum):
    CORRECTNESS = "correctness"
    PERFORMANCE = "performance"


@dataclass(frozen=True)
class PromptDefinition:
    """A single test prompt. Bump ``version`` whenever ``prompt_text`` changes."""
    id: str
    name: str
    prompt_text: str
    version: str
    type: PromptType
    replicate_count: int = 1
    scoring_fn: Optional[Scorer] = field(default=None, compare=False)

    def __post_init__(self):
        if self.replicate_count < 1:
            raise ValueError(f"Prompt {self.id}: replicate_count must be >= 1")
        if self.type == PromptType.CORRECTNESS and self.scoring_fn is None:
            raise ValueError(f"Prompt {self.id}: correctness prompts need a scoring function")

    @property
    def is_performance(self) -> bool:
        return self.type == PromptType.PERFORMANCE


@dataclass(frozen=True)
class PromptCatalog:
    suite_version: str
    prompts: Tuple[PromptDefinition, ...]

    def __post_init__(self):
        ids = [p.id for p in self.prompts]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate prompt ids in suite {self.suite_version}")

    def __iter__(self):
        return iter(self.prompts)

    def __len__(self) -> int:
        return len(self.prompts)

    def get(self, prompt_id: str) -> Optional[PromptDefinition]:
        return self.by_id.get(prompt_id)

    @property
    def by_id(self) -> Dict[str, PromptDefinition]:
        return {p.id: p for p in self.prompts}

    @property
    def correctness_prompts(self) -> Tuple[PromptDefinition, ...]:
        return tuple(p for p in self.prompts if p.type == PromptType.CORRECTNESS)

    @property
    def performance_prompts(self) -> Tuple[PromptDefinition, ...]:
        return tuple(p for p in self.prompts if p.type == PromptType.PERFORMANCE)

    @property
    def total_replicates(self) -> int:
        return sum(p.replicate_count for p in self.prompts)


SUITE_VERSION = "1.0.0"

DEFAULT_CATALOG = PromptCatalog(
    suite_version=SUITE_VERSION,
    prompts=(
        PromptDefinition(
            id="P1",
            name="Deterministic Coding",
            version="1.0.0",
            type=PromptType.CORRECTNESS,
            replicate_count=2,
            prompt_text=(
                "Write a Python function that finds the kth largest element in an unsorted array "
                "using a min-heap. The function should be called 'find_kth_largest(nums, k)' and "
                "handle edge cases. Output ONLY the function code, no explanation."
            ),
            scoring_fn=score_kth_largest,
        ),
        PromptDefinition(
            id="P2",
            name="Parsing/Transform",
            version="1.0.0",
            type=PromptType.CORRECTNESS,
            replicate_count=2,
            prompt_text=(
                "Parse this log line and output as JSON with fields: timestamp, level, message, request_id.\n"
                'Log: "2024-03-15T10:30:45.123Z [ERROR] Failed to process payment for order_12345 '
                'request_id=req_abc123"\n'
                "Output ONLY the JSON, no explanation."
            ),
            scoring_fn=score_log_parse,
        ),
        PromptDefinition(
            id="P3",
            name="Bug-Fix",
            version="1.0.0",
            type=PromptType.CORRECTNESS,
            replicate_count=2,
            prompt_text=(
                "Fix this buggy JavaScript function that should return the factorial of n:\n\n"
                "function factorial(n) {\n"
                "  if (n = 0) return 1;\n"
                "  return n * factorial(n);\n"
                "}\n\n"
                "Output ONLY the corrected function, no explanation."
            ),
            scoring_fn=score_factorial_fix,
        ),
        PromptDefinition(
            id="P4",
            name="Long-Form Generation",
            version="1.0.0",
            type=PromptType.PERFORMANCE,
            replicate_count=3,
            prompt_text=(
                "Generate a complete CLI application in Python that includes:\n\n"
                "1. A main command with help text\n"
                "2. Six subcommands: init, status, add, remove, list, and sync\n"
                "3. Each subcommand should have:\n"
                "   - A description\n"
                "   - At least 2 command-line arguments or options\n"
                "   - Basic implementation that prints what it would do\n"
                "4. Use argparse for argument parsing\n"
                "5. Include proper error handling\n"
                "6. Add docstrings for all functions\n"
                "7. Structure the code with clear separation of concerns\n\n"
                "The application should be a task manager CLI. Make it production-ready with "
                "proper structure and comprehensive functionality."
            ),
        ),
        PromptDefinition(
            id="P5",
            name="Reasoning",
            version="1.0.0",
            type=PromptType.CORRECTNESS,
            replicate_count=2,
            prompt_text=(
                "A train travels from City A to City B at 60 mph. The return trip at 40 mph takes "
                "2 hours longer. What is the distance between the cities in miles? "
                "Output ONLY the number."
            ),
            scoring_fn=score_train_distance,
        ),
    ),
)
