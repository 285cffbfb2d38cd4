"""terse - token-efficient shell output for AI coding assistants.

Intercepts shell commands issued by an AI coding assistant, runs them, and
returns a compact rendition of their output:
- Command normalization and pre-execution safety classification
- Rule-based optimizers for git, file, build and docker commands (fast path)
- Deterministic preprocessing plus a local LLM for large outputs (smart path)
- Per-path circuit breaker and validation of LLM output
- Hook integration, analytics and savings reports

Any internal failure degrades to the command's raw output.
"""

__version__ = "1.0.0"

from .circuit_breaker import CircuitBreaker, PathId
from .classifier import CommandClassification, NeverOptimizeReason, SafetyClassifier
from .config import TerseConfig, load_config
from .matching import CommandContext, extract_core_command
from .optimizers import OptimizerRegistry, build_registry
from .preprocessing import PreprocessedOutput, PreprocessingPipeline
from .router import ExecutionResult, HookDecision, OptimizationPath, PassthroughReason, Router
from .validation import ValidationGate, ValidationResult

__all__ = [
    # Normalization and safety
    "CommandContext",
    "extract_core_command",
    "SafetyClassifier",
    "CommandClassification",
    "NeverOptimizeReason",
    # Configuration
    "TerseConfig",
    "load_config",
    # Optimization
    "OptimizerRegistry",
    "build_registry",
    "PreprocessingPipeline",
    "PreprocessedOutput",
    "ValidationGate",
    "ValidationResult",
    # Routing
    "Router",
    "HookDecision",
    "ExecutionResult",
    "OptimizationPath",
    "PassthroughReason",
    "CircuitBreaker",
    "PathId",
]
