"""Routing between the fast, smart and passthrough paths.

Two entry points share one Router instance per process:
- `decide_hook` runs before execution and only decides whether the command
  should be rewritten to go through `terse run`
- `execute` runs the command and picks the path from its output

Execution order:
1. Disabled or never-optimize: run unchanged
2. Fast substitution (e.g. `git status --porcelain -b`), regardless of size
3. Run the original command
4. Below the passthrough floor: return raw output
5. Fast path transformation of the captured output
6. Smart path for large outputs (preprocess, LLM, validate)
7. Passthrough
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from terse.circuit_breaker import CircuitBreaker, PathId
from terse.classifier import CommandClassification, NeverOptimizeReason, SafetyClassifier
from terse.config import TerseConfig
from terse.llm import LLMError, OllamaClient
from terse.matching import CommandContext, command_shape
from terse.optimizers import OptimizerRegistry, build_registry
from terse.optimizers.base import Optimizer, OptimizerError
from terse.preprocessing import PreprocessingPipeline
from terse.process import ProcessOutput, run_shell_command
from terse.prompts import classify_command
from terse.tokens import estimate_tokens
from terse.validation import ValidationGate, clean_candidate

__all__ = [
    "OptimizationPath",
    "PassthroughReason",
    "HookDecision",
    "ExecutionResult",
    "PreviewResult",
    "DecisionCache",
    "Router",
    "DEFAULT_CACHE_TTL_SECS",
]

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECS = 300


class OptimizationPath(Enum):
    FAST = "fast"
    SMART = "smart"
    PASSTHROUGH = "passthrough"


class PassthroughReason(Enum):
    """Why a command or its output was left unmodified."""

    LOOP_GUARD = "loop_guard"
    HEREDOC = "heredoc"
    NEVER_OPTIMIZE = "never_optimize"
    REDIRECT = "redirect"
    NO_PATH_AVAILABLE = "no_path_available"
    CIRCUIT_BREAKER = "circuit_breaker"
    TOO_SMALL = "too_small"
    DISABLED = "disabled"
    TIMED_OUT = "timed_out"

    @property
    def display(self) -> str:
        return _REASON_DISPLAY[self]

    @classmethod
    def from_never_optimize(cls, reason: Optional[NeverOptimizeReason]) -> "PassthroughReason":
        return _NEVER_TO_PASSTHROUGH.get(reason, cls.NEVER_OPTIMIZE)


_REASON_DISPLAY = {
    PassthroughReason.LOOP_GUARD: "terse invocation (loop guard)",
    PassthroughReason.HEREDOC: "contains heredoc",
    PassthroughReason.NEVER_OPTIMIZE: "destructive or editor command",
    PassthroughReason.REDIRECT: "output redirection",
    PassthroughReason.NO_PATH_AVAILABLE: "no optimizer or smart path available",
    PassthroughReason.CIRCUIT_BREAKER: "circuit breaker tripped",
    PassthroughReason.TOO_SMALL: "output too small to optimize",
    PassthroughReason.DISABLED: "optimization disabled",
    PassthroughReason.TIMED_OUT: "command timed out",
}

_NEVER_TO_PASSTHROUGH = {
    NeverOptimizeReason.LOOP_GUARD: PassthroughReason.LOOP_GUARD,
    NeverOptimizeReason.HEREDOC: PassthroughReason.HEREDOC,
    NeverOptimizeReason.DENY_LIST: PassthroughReason.NEVER_OPTIMIZE,
    NeverOptimizeReason.REDIRECT: PassthroughReason.REDIRECT,
}


@dataclass(frozen=True)
class HookDecision:
    """Pre-execution decision.

    Attributes:
        rewrite: Whether to reroute the command through `terse run`.
        expected_path: Path expected at run time (informational).
        reason: Why not, when rewrite is False.
    """

    rewrite: bool
    expected_path: OptimizationPath = OptimizationPath.PASSTHROUGH
    reason: Optional[PassthroughReason] = None

    @classmethod
    def rewrite_to(cls, path: OptimizationPath) -> "HookDecision":
        return cls(rewrite=True, expected_path=path)

    @classmethod
    def passthrough(cls, reason: PassthroughReason) -> "HookDecision":
        return cls(rewrite=False, reason=reason)

    def describe(self) -> str:
        if self.rewrite:
            return f"rewrite (expected: {self.expected_path.value})"
        return f"passthrough ({self.reason.display if self.reason else 'unknown'})"


@dataclass
class ExecutionResult:
    """What `terse run` prints and logs for one command.

    Attributes:
        output: Final text for stdout.
        stderr: Raw stderr, only set on unmodified passthrough.
        exit_code: Exit status of the command that produced the output.
        path: Path that produced `output`.
        original_tokens: Estimated tokens of the raw output.
        optimized_tokens: Estimated tokens of `output`.
        optimizer_name: Optimizer, `llm:<model>`, `preprocessing` or `passthrough`.
        latency_ms: LLM latency (smart path only).
        preprocessing_bytes_removed: Bytes removed before the LLM call.
        fallback_reason: Why the expected path was not used, if any.
    """

    output: str
    stderr: str = ""
    exit_code: int = 0
    path: OptimizationPath = OptimizationPath.PASSTHROUGH
    original_tokens: int = 0
    optimized_tokens: int = 0
    optimizer_name: str = "passthrough"
    latency_ms: Optional[int] = None
    preprocessing_bytes_removed: int = 0
    fallback_reason: Optional[str] = None

    @property
    def savings_pct(self) -> float:
        if self.original_tokens == 0:
            return 0.0
        saved = self.original_tokens - self.optimized_tokens
        return max(0.0, saved * 100.0 / self.original_tokens)


@dataclass
class PreviewResult:
    """Hook decision plus the actual execution, for `terse test`."""

    command: str
    core: str
    classification: CommandClassification
    hook: HookDecision
    optimizer: Optional[str]
    execution: ExecutionResult


class DecisionCache:
    """In-memory TTL cache of classifications keyed by command shape.

    Example:
        >>> cache = DecisionCache(ttl_secs=300)
        >>> cache.put("git log -n 5", CommandClassification.allowed())
        >>> cache.get("git log -n 10").optimizable
        True
    """

    def __init__(
        self,
        ttl_secs: float = DEFAULT_CACHE_TTL_SECS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_secs = ttl_secs
        self._clock = clock
        self._entries: Dict[str, Tuple[CommandClassification, float]] = {}

    def get(self, command: str) -> Optional[CommandClassification]:
        entry = self._entries.get(command_shape(command))
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at >= self.ttl_secs:
            return None
        return value

    def put(self, command: str, classification: CommandClassification) -> None:
        self._entries[command_shape(command)] = (classification, self._clock())

    def __len__(self) -> int:
        return len(self._entries)


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


class Router:
    """Decision engine; holds every collaborator explicitly.

    Example:
        >>> router = Router(load_config(), breaker=CircuitBreaker.load(state_file))
        >>> result = router.execute("git status")
        >>> result.path
        <OptimizationPath.FAST: 'fast'>
    """

    def __init__(
        self,
        config: Optional[TerseConfig] = None,
        breaker: Optional[CircuitBreaker] = None,
        registry: Optional[OptimizerRegistry] = None,
        llm_client: Optional[OllamaClient] = None,
        preprocessor: Optional[PreprocessingPipeline] = None,
        gate: Optional[ValidationGate] = None,
        runner: Callable[..., ProcessOutput] = run_shell_command,
        cache: Optional[DecisionCache] = None,
    ):
        """Initialize the router.

        Args:
            config: Effective configuration (defaults when None).
            breaker: Circuit breaker; an in-memory one when None.
            registry: Optimizer registry; built from config when None.
            llm_client: Smart path client; built lazily from config when None.
            preprocessor: Preprocessing pipeline; built from config when None.
            gate: Validation gate; built from config when None.
            runner: Executes a command line, `runner(command, timeout=...)`.
            cache: Classification cache.
        """
        self.config = config or TerseConfig()
        self.breaker = breaker or CircuitBreaker.from_config(self.config, None)
        self.registry = registry if registry is not None else build_registry(self.config)
        self._llm_client = llm_client
        self.preprocessor = preprocessor or PreprocessingPipeline(self.config.preprocessing)
        self.gate = gate or ValidationGate(self.config.smart_path.max_output_ratio)
        self.runner = runner
        self.cache = cache if cache is not None else DecisionCache(
            self.config.router.decision_cache_ttl_secs
        )
        self.classifier = SafetyClassifier(self.config.passthrough.commands)
        self._llm_healthy: Optional[bool] = None
        # Set once any command line has been handed to the runner
        self.executed = False

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @property
    def llm_client(self) -> OllamaClient:
        if self._llm_client is None:
            self._llm_client = OllamaClient.from_config(self.config.smart_path)
        return self._llm_client

    def llm_healthy(self) -> bool:
        """Health of the LLM server, checked once per router."""
        if self._llm_healthy is None:
            self._llm_healthy = self.llm_client.is_healthy()
        return self._llm_healthy

    def classify(self, ctx: CommandContext) -> CommandClassification:
        cached = self.cache.get(ctx.original)
        if cached is not None:
            return cached
        classification = self.classifier.classify(ctx)
        self.cache.put(ctx.original, classification)
        return classification

    def _fast_enabled(self) -> bool:
        return self.config.fast_path.enabled and self.config.fast_allowed_by_mode

    def _smart_enabled(self) -> bool:
        return self.config.smart_path.enabled and self.config.smart_allowed_by_mode

    def _fast_optimizer(self, ctx: CommandContext) -> Optional[Optimizer]:
        if not self._fast_enabled() or ctx.output_piped:
            return None
        return self.registry.find_specialized(ctx)

    # ------------------------------------------------------------------
    # Pre-execution
    # ------------------------------------------------------------------

    def decide_hook(self, command: str) -> HookDecision:
        """Decide whether to reroute a command; never executes it."""
        if not self.config.optimization_enabled:
            return HookDecision.passthrough(PassthroughReason.DISABLED)

        ctx = CommandContext.from_command(command)
        classification = self.classify(ctx)
        if not classification.optimizable:
            return HookDecision.passthrough(
                PassthroughReason.from_never_optimize(classification.reason)
            )

        blocked = False

        if self._fast_optimizer(ctx) is not None:
            if self.breaker.is_allowed(PathId.FAST):
                return HookDecision.rewrite_to(OptimizationPath.FAST)
            blocked = True

        if self._smart_enabled():
            if not self.breaker.is_allowed(PathId.SMART):
                blocked = True
            elif self.llm_healthy():
                return HookDecision.rewrite_to(OptimizationPath.SMART)

        if self.config.general.mode == "fast-only" and self.config.fast_path.enabled:
            if self.breaker.is_allowed(PathId.FAST):
                return HookDecision.rewrite_to(OptimizationPath.FAST)
            blocked = True

        if blocked:
            return HookDecision.passthrough(PassthroughReason.CIRCUIT_BREAKER)
        return HookDecision.passthrough(PassthroughReason.NO_PATH_AVAILABLE)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _timeout(self) -> Optional[float]:
        secs = self.config.general.command_timeout_secs
        return secs if secs and secs > 0 else None

    def _run(self, command: str) -> ProcessOutput:
        timeout = self._timeout()
        self.executed = True
        return self.runner(command, timeout=timeout)

    @staticmethod
    def _passthrough(
        raw: ProcessOutput,
        reason: Optional[PassthroughReason] = None,
        fallback_reason: Optional[str] = None,
    ) -> ExecutionResult:
        tokens = estimate_tokens(raw.combined)
        return ExecutionResult(
            output=raw.stdout,
            stderr=raw.stderr,
            exit_code=raw.exit_code,
            path=OptimizationPath.PASSTHROUGH,
            original_tokens=tokens,
            optimized_tokens=tokens,
            optimizer_name="passthrough",
            fallback_reason=fallback_reason or (reason.display if reason else None),
        )

    def _try_substitution(
        self, ctx: CommandContext, optimizer: Optimizer, substitute: str
    ) -> Optional[ExecutionResult]:
        """Run a substitute command; None (and a recorded failure) when it fails."""
        logger.debug("substituting %r -> %r", ctx.original, substitute)
        output = self._run(substitute)
        if not output.success:
            logger.info(
                "substitute failed (exit %d%s): %s",
                output.exit_code,
                ", timed out" if output.timed_out else "",
                substitute,
            )
            self.breaker.record_failure(PathId.FAST)
            return None

        raw = output.combined
        try:
            optimized = optimizer.optimize(ctx, raw)
        except OptimizerError as e:
            logger.info("%s", e)
            self.breaker.record_failure(PathId.FAST)
            return None

        self.breaker.record_success(PathId.FAST)
        return ExecutionResult(
            output=optimized.output,
            exit_code=output.exit_code,
            path=OptimizationPath.FAST,
            original_tokens=estimate_tokens(raw),
            optimized_tokens=optimized.optimized_tokens,
            optimizer_name=optimized.optimizer_used,
        )

    def _try_transform(
        self, ctx: CommandContext, optimizer: Optimizer, raw: ProcessOutput
    ) -> Optional[ExecutionResult]:
        text = raw.combined
        try:
            optimized = optimizer.optimize(ctx, text)
        except OptimizerError as e:
            logger.info("%s", e)
            self.breaker.record_failure(PathId.FAST)
            return None

        self.breaker.record_success(PathId.FAST)
        return ExecutionResult(
            output=optimized.output,
            exit_code=raw.exit_code,
            path=OptimizationPath.FAST,
            original_tokens=estimate_tokens(text),
            optimized_tokens=optimized.optimized_tokens,
            optimizer_name=optimized.optimizer_used,
        )

    def _try_smart(self, ctx: CommandContext, raw: ProcessOutput) -> ExecutionResult:
        """Preprocess, condense and validate; preprocessed text on any failure."""
        text = raw.combined
        category = classify_command(ctx.core)
        preprocessed = self.preprocessor.run(text, category.value)
        original_tokens = estimate_tokens(text)

        failure = None
        try:
            result = self.llm_client.condense(ctx.core, preprocessed.text)
        except LLMError as e:
            failure = str(e)
        else:
            candidate = clean_candidate(result.output)
            verdict = self.gate.validate(preprocessed.text, candidate, category)
            if verdict.valid:
                self.breaker.record_success(PathId.SMART)
                return ExecutionResult(
                    output=candidate,
                    exit_code=raw.exit_code,
                    path=OptimizationPath.SMART,
                    original_tokens=original_tokens,
                    optimized_tokens=estimate_tokens(candidate),
                    optimizer_name=f"llm:{result.model}",
                    latency_ms=result.latency_ms,
                    preprocessing_bytes_removed=preprocessed.bytes_removed,
                )
            failure = f"rejected: {verdict.reason}"

        logger.info("smart path failed for %r: %s", ctx.core, failure)
        self.breaker.record_failure(PathId.SMART)
        return ExecutionResult(
            output=preprocessed.text,
            exit_code=raw.exit_code,
            path=OptimizationPath.PASSTHROUGH,
            original_tokens=original_tokens,
            optimized_tokens=estimate_tokens(preprocessed.text),
            optimizer_name="preprocessing",
            preprocessing_bytes_removed=preprocessed.bytes_removed,
            fallback_reason=f"smart path failed ({failure})",
        )

    def _smart_eligible(self, size: int) -> bool:
        if not self._smart_enabled():
            return False
        if self.config.general.mode == "smart-only":
            return size >= self.config.output_thresholds.passthrough_below_bytes
        return size >= self.config.output_thresholds.smart_path_above_bytes

    def execute(self, command: str) -> ExecutionResult:
        """Run a command through the optimization pipeline.

        Args:
            command: Command line as issued.

        Returns:
            ExecutionResult carrying the command's own exit code.

        Raises:
            OSError: Only if the shell cannot be started at all.
        """
        ctx = CommandContext.from_command(command)

        if not self.config.optimization_enabled:
            return self._passthrough(self._run(command), PassthroughReason.DISABLED)

        classification = self.classify(ctx)
        if not classification.optimizable:
            reason = PassthroughReason.from_never_optimize(classification.reason)
            return self._passthrough(self._run(command), reason)

        optimizer = self._fast_optimizer(ctx)
        fast_only = self.config.general.mode == "fast-only" and self.config.fast_path.enabled
        fast_allowed = self.breaker.is_allowed(PathId.FAST)
        fast_failed = False
        breaker_blocked = False

        if (optimizer is not None or fast_only) and not fast_allowed:
            self.breaker.record_bypass(PathId.FAST)
            breaker_blocked = True

        # Substitution runs before (and instead of) the original
        if optimizer is not None and fast_allowed:
            try:
                substitute = optimizer.substitute(ctx)
                if substitute:
                    result = self._try_substitution(ctx, optimizer, substitute)
                    if result is not None:
                        return result
                    fast_failed = True
            except Exception as e:
                logger.warning("substitution for %r raised: %s", ctx.original, e)
                self.breaker.record_failure(PathId.FAST)
                fast_failed = True

        raw = self._run(command)
        # The command has run; from here on every error returns its raw output
        try:
            return self._route_output(ctx, raw, optimizer, fast_allowed, fast_failed, breaker_blocked)
        except Exception as e:
            logger.warning("routing output of %r failed: %s", ctx.original, e)
            return self._passthrough(raw, fallback_reason=f"internal error: {e}")

    def _route_output(
        self,
        ctx: CommandContext,
        raw: ProcessOutput,
        optimizer: Optional[Optimizer],
        fast_allowed: bool,
        fast_failed: bool,
        breaker_blocked: bool,
    ) -> ExecutionResult:
        fast_only = self.config.general.mode == "fast-only" and self.config.fast_path.enabled
        size = _byte_len(raw.combined)

        if raw.timed_out:
            if optimizer is not None and fast_allowed and not fast_failed:
                self.breaker.record_failure(PathId.FAST)
            elif self._smart_eligible(size) and self.breaker.is_allowed(PathId.SMART):
                self.breaker.record_failure(PathId.SMART)
            return self._passthrough(raw, PassthroughReason.TIMED_OUT)

        if size < self.config.output_thresholds.passthrough_below_bytes:
            return self._passthrough(raw, PassthroughReason.TOO_SMALL)

        if fast_allowed and not fast_failed:
            if optimizer is not None:
                result = self._try_transform(ctx, optimizer, raw)
                if result is not None:
                    return result
            elif fast_only:
                result = self._try_transform(ctx, self.registry.fallback, raw)
                if result is not None:
                    return result

        if self._smart_eligible(size):
            if not self.breaker.is_allowed(PathId.SMART):
                self.breaker.record_bypass(PathId.SMART)
                breaker_blocked = True
            elif self.llm_healthy():
                return self._try_smart(ctx, raw)

        if breaker_blocked:
            return self._passthrough(raw, PassthroughReason.CIRCUIT_BREAKER)
        if fast_failed:
            return self._passthrough(
                raw,
                PassthroughReason.NO_PATH_AVAILABLE,
                fallback_reason="fast path substitution failed",
            )
        return self._passthrough(raw, PassthroughReason.NO_PATH_AVAILABLE)

    def preview(self, command: str) -> PreviewResult:
        """Hook decision plus a real execution (used by `terse test`)."""
        ctx = CommandContext.from_command(command)
        hook = self.decide_hook(command)
        optimizer = self.registry.find_specialized(ctx)
        execution = self.execute(command)
        return PreviewResult(
            command=command,
            core=ctx.core,
            classification=self.classify(ctx),
            hook=hook,
            optimizer=optimizer.name if optimizer else None,
            execution=execution,
        )
