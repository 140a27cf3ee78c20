"""Verify, analyze and fix loop driving a project towards a clean install."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from .analyze_errors import ErrorAnalyzer
from .fix_history import FixHistoryStore
from .fix_strategy import FixStrategyEngine
from .models import AnalyzedError, FixResult, FixStrategy

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10


@dataclass
class VerificationOutcome:
    """Result of one install/build attempt."""

    success: bool
    output: str = ""


Verifier = Callable[[Path], Awaitable[VerificationOutcome]]


@dataclass
class AppliedFix:
    error: AnalyzedError
    result: FixResult


@dataclass
class RemediationReport:
    """What a remediation run did and how it ended."""

    success: bool
    iterations: int
    stop_reason: str
    applied: list[AppliedFix] = field(default_factory=list)
    remaining_errors: list[AnalyzedError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "iterations": self.iterations,
            "stopReason": self.stop_reason,
            "applied": [
                {
                    "errorPattern": fix.error.error_pattern,
                    "strategy": fix.result.strategy.to_dict(),
                    "success": fix.result.success,
                    "error": fix.result.error,
                }
                for fix in self.applied
            ],
            "remainingErrors": [
                {"category": error.category.value, "package": error.package_name, "message": error.message}
                for error in self.remaining_errors
            ],
        }


class RemediationLoop:
    """Repeatedly verifies a project and applies the next fix for its top error.

    The loop stops when verification passes, when no error has an untried
    strategy left, or after ``max_iterations`` verifications. Fixes that
    were applied before a passing verification are recorded as successes.
    """

    def __init__(
        self,
        engine: FixStrategyEngine,
        store: FixHistoryStore,
        analyzer: ErrorAnalyzer,
        verifier: Verifier,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        dry_run: bool = False,
    ):
        """Initialize remediation loop.

        Args:
            engine: Strategy engine; its attempt tracker is reset per run
            store: History store used for lookup and for recording wins
            analyzer: Error analyzer for failed verifications
            verifier: Async callable running the install/build
            max_iterations: Upper bound on verifications
            dry_run: Select strategies without touching the project
        """
        self.engine = engine
        self.store = store
        self.verifier = verifier
        self.analyzer = analyzer
        self.max_iterations = max_iterations
        self.dry_run = dry_run

    async def run(self, project_path: str | Path, repo_id: str) -> RemediationReport:
        root = Path(project_path)
        self.engine.reset_attempted_strategies()
        history = self.store.load_history(repo_id)
        applied: list[AppliedFix] = []
        errors: list[AnalyzedError] = []

        for iteration in range(1, self.max_iterations + 1):
            outcome = await self.verifier(root)
            if outcome.success:
                self._record(repo_id, applied)
                logger.info("Verification passed after %d iteration(s)", iteration)
                return RemediationReport(True, iteration, "verified", applied)

            errors = self.analyzer.analyze(outcome.output)
            target = next(
                (error for error in errors if self.engine.has_untried_strategies(error, history, repo_id)),
                None,
            )
            if target is None:
                logger.warning("No untried strategies left for %d error(s)", len(errors))
                return RemediationReport(False, iteration, "exhausted", applied, errors)

            strategy = self.engine.select_strategy(target, history, repo_id)
            self.engine.mark_strategy_attempted(target, strategy)
            result = self._apply(root, strategy)
            applied.append(AppliedFix(target, result))
            logger.info(
                "Iteration %d: %s for %s -> %s",
                iteration,
                strategy.type,
                target.error_pattern,
                "applied" if result.success else result.error,
            )

            if self.dry_run:
                return RemediationReport(False, iteration, "dry-run", applied, errors)

        logger.warning("Gave up after %d iterations", self.max_iterations)
        return RemediationReport(False, self.max_iterations, "max-iterations", applied, errors)

    def _apply(self, root: Path, strategy: FixStrategy) -> FixResult:
        if self.dry_run:
            return FixResult(success=True, strategy=strategy)
        return self.engine.apply_fix(root, strategy)

    def _record(self, repo_id: str, applied: list[AppliedFix]) -> None:
        wins = [fix for fix in applied if fix.result.success]
        if not wins:
            return
        for fix in wins:
            self.store.record_fix(repo_id, fix.error.error_pattern, fix.result.strategy)
        self.store.save_history(repo_id)
