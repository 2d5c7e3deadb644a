"""Suite runner: executes the prompt catalog against the endpoint and records a run."""

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from core.config import MonitorSettings, apply_overrides
from llm.base import EndpointClient, ExecutionResult, failed_result
from storage.base import RunStore
from storage.models import SuiteRun, TestCaseRecord, utcnow

from .prompts import DEFAULT_CATALOG, PromptCatalog, PromptDefinition, PromptType
from .regression import CurrentMetrics, alert_message, calculate_status, detect_regressions
from .stats import PerformanceSummary

logger = logging.getLogger(__name__)

CORRECTNESS_MAX_TOKENS = 500

REFUSAL_PHRASES = (
    "i cannot",
    "i can't",
    "i'm unable",
    "i am unable",
    "i won't",
)


def is_refusal(output: str) -> bool:
    text = output.lower()
    return any(phrase in text for phrase in REFUSAL_PHRASES)


@dataclass
class TestResult:
    """One prompt x replicate execution with its score."""
    __test__ = False

    prompt: PromptDefinition
    replicate_number: int
    result: ExecutionResult
    score: int
    success: bool

    def to_record(self, run_id: str, store_raw_outputs: bool) -> TestCaseRecord:
        return TestCaseRecord(
            id=str(uuid.uuid4()),
            run_id=run_id,
            prompt_id=self.prompt.id,
            prompt_version=self.prompt.version,
            replicate_number=self.replicate_number,
            request_id=self.result.request_id,
            success=self.success,
            score=self.score,
            ttft=self.result.ttft,
            total_latency=self.result.total_latency,
            output_tokens=self.result.output_tokens,
            tokens_per_sec=self.result.tokens_per_sec,
            finish_reason=self.result.finish_reason,
            output_hash=self.result.output_hash,
            raw_output=self.result.output if store_raw_outputs else None,
            error_message=self.result.error,
        )


def correctness_score(results: List[TestResult]) -> int:
    """Sum over correctness prompts of the best score among each prompt's replicates."""
    best: Dict[str, int] = defaultdict(int)
    for r in results:
        if r.prompt.type == PromptType.CORRECTNESS:
            best[r.prompt.id] = max(best[r.prompt.id], r.score)
    return sum(best.values())


def performance_summary(results: List[TestResult]) -> PerformanceSummary:
    """Order statistics over successful performance replicates.

    A ttft of 0.0 is a real sample; the remaining metrics are zero only when the
    stream produced no content and are left out.
    """
    usable = [r.result for r in results if r.prompt.is_performance and r.result.error is None]
    return PerformanceSummary.from_samples(
        ttfts=[r.ttft for r in usable if r.ttft is not None],
        latencies=[r.total_latency for r in usable if r.total_latency],
        tokens_per_sec=[r.tokens_per_sec for r in usable if r.tokens_per_sec],
        output_tokens=[r.output_tokens for r in usable if r.output_tokens],
    )


class SuiteRunner:
    """Runs the catalog sequentially and persists one SuiteRun per call."""

    def __init__(
        self,
        client: EndpointClient,
        store: RunStore,
        settings: MonitorSettings,
        catalog: PromptCatalog = DEFAULT_CATALOG,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.settings = settings
        self.catalog = catalog
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def effective_settings(self) -> MonitorSettings:
        return apply_overrides(self.settings, self.store.get_config_values())

    async def run_suite(self) -> SuiteRun:
        async with self._lock:
            return await self._run_suite()

    async def _run_suite(self) -> SuiteRun:
        settings = self.effective_settings()
        timestamp = utcnow()
        results: List[TestResult] = []
        errors = 0
        refusals = 0

        logger.info(
            f"Starting suite {self.catalog.suite_version} against {settings.provider}/{settings.model_id} "
            f"({self.catalog.total_replicates} executions)"
        )

        for prompt in self.catalog:
            logger.info(f"Running {prompt.name} ({prompt.id})")
            max_tokens = settings.max_tokens if prompt.is_performance else CORRECTNESS_MAX_TOKENS

            for replicate in range(1, prompt.replicate_count + 1):
                result = await self._execute(prompt, replicate, max_tokens, settings)
                score = 0
                success = True

                if result.error is not None:
                    errors += 1
                    success = False
                elif prompt.type == PromptType.CORRECTNESS:
                    score = self._score(prompt, result.output)
                    success = score == 1
                    if not success and is_refusal(result.output):
                        refusals += 1

                results.append(TestResult(prompt, replicate, result, score, success))
                await self._sleep(settings.pacing_delay)

        total = len(results)
        perf = performance_summary(results)
        score = correctness_score(results)
        error_rate = errors / total if total else 0.0
        refusal_rate = refusals / total if total else 0.0

        baseline = self.store.get_rolling_baseline()
        flags = detect_regressions(
            CurrentMetrics(
                correctness_score=score,
                error_rate=error_rate,
                ttft_p95=perf.ttft_p95,
                latency_p95=perf.latency_p95,
                tokens_per_sec_median=perf.tokens_per_sec_median,
                output_tokens_median=perf.output_tokens_median,
            ),
            baseline,
        )

        run = SuiteRun(
            id=str(uuid.uuid4()),
            timestamp=timestamp,
            model_id=settings.model_id,
            provider=settings.provider,
            region=settings.region,
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_tokens=settings.max_tokens,
            suite_version=self.catalog.suite_version,
            correctness_score=score,
            error_rate=error_rate,
            refusal_rate=refusal_rate,
            flags=[flag.value for flag in flags],
            **perf.to_dict(),
        )

        self.store.insert_run(run)
        for r in results:
            self.store.insert_test_case(r.to_record(run.id, settings.store_raw_outputs))

        status = calculate_status(flags)
        logger.info(f"Suite completed. Status: {status.value}, Score: {score}/{len(self.catalog.correctness_prompts)}")
        if flags:
            logger.warning(f"Run {run.id} flagged: {alert_message(flags)}")
        return run

    async def _execute(
        self,
        prompt: PromptDefinition,
        replicate: int,
        max_tokens: int,
        settings: MonitorSettings,
    ) -> ExecutionResult:
        try:
            return await self.client.execute(
                prompt.prompt_text, max_tokens, settings.cache_busting, settings=settings
            )
        except Exception as e:
            logger.error(f"Error running {prompt.id} rep {replicate}: {e}")
            return failed_result(str(e) or e.__class__.__name__)

    def _score(self, prompt: PromptDefinition, output: str) -> int:
        try:
            return 1 if prompt.scoring_fn(output) == 1 else 0
        except Exception as e:
            logger.error(f"Scoring {prompt.id} failed, counting as 0: {e}")
            return 0
