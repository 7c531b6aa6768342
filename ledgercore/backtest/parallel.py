"""Run independent backtests concurrently.

Jobs share no mutable state. A failing job is recorded in ``errors`` and
does not abort the batch.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from ledgercore.backtest.simulator import StrategySimulator
from ledgercore.backtest.strategy import StrategyConfig, build_rule
from ledgercore.config import settings
from ledgercore.connectors.base import Candle
from ledgercore.store.models import BacktestRun

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BacktestJob:
    job_id: str
    candles: tuple[Candle, ...]
    config: StrategyConfig
    initial_balance: float = 10_000.0
    rule_name: str | None = None  # defaults to config.strategy_id


@dataclass
class ParallelRunResult:
    results: dict[str, BacktestRun] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    total_jobs: int = 0
    execution_time_seconds: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_jobs == 0:
            return 0.0
        return len(self.results) / self.total_jobs

    def best(self) -> tuple[str, BacktestRun] | None:
        """Job with the highest total return."""
        if not self.results:
            return None
        return max(self.results.items(), key=lambda kv: kv[1].total_return_pct)


def _run_job(
    job: BacktestJob, cancel_event: threading.Event | None = None
) -> tuple[str, BacktestRun | None, str | None]:
    try:
        rule = build_rule(job.config, job.rule_name)
        run = StrategySimulator().run(
            list(job.candles),
            rule,
            job.initial_balance,
            config=job.config,
            cancel_event=cancel_event,
        )
        return job.job_id, run, None
    except Exception as e:
        return job.job_id, None, f"{type(e).__name__}: {e}"


def run_backtests(
    jobs: Sequence[BacktestJob],
    max_workers: int | None = None,
    use_processes: bool = False,
    cancel_event: threading.Event | None = None,
    progress_callback: Callable[[int, int], None] | None = None,
) -> ParallelRunResult:
    """Run ``jobs`` on a thread or process pool.

    ``cancel_event`` stops running jobs between steps in thread mode. In
    process mode it only prevents jobs that have not started yet.
    """
    start = time.time()
    result = ParallelRunResult(total_jobs=len(jobs))
    if not jobs:
        return result

    workers = max_workers or settings.backtest_max_workers or min(os.cpu_count() or 4, 8)
    pool: Executor = (
        ProcessPoolExecutor(max_workers=workers)
        if use_processes
        else ThreadPoolExecutor(max_workers=workers)
    )
    with pool:
        if use_processes:
            futures = {pool.submit(_run_job, job): job.job_id for job in jobs}
        else:
            futures = {pool.submit(_run_job, job, cancel_event): job.job_id for job in jobs}

        done = 0
        for future in as_completed(futures):
            if future.cancelled():
                continue
            job_id, run, error = future.result()
            done += 1
            if error is not None:
                result.errors[job_id] = error
                logger.warning("Backtest job %s failed: %s", job_id, error)
            else:
                result.results[job_id] = run
            if progress_callback:
                progress_callback(done, len(jobs))
            if cancel_event is not None and cancel_event.is_set():
                for f in futures:
                    f.cancel()

    for f, job_id in futures.items():
        if f.cancelled():
            result.errors[job_id] = "cancelled"

    result.execution_time_seconds = time.time() - start
    logger.info(
        "Parallel backtests: %d ok, %d failed in %.1fs",
        len(result.results), len(result.errors), result.execution_time_seconds,
    )
    return result
