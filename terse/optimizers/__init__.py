"""Rule-based optimizers and their registry.

The registry is an ordered list of optimizers ending with exactly one
fallback (the generic optimizer). Selection returns the first optimizer that
recognizes the core command.
"""

from typing import Iterable, List, Optional

from terse.matching import CommandContext
from terse.optimizers.base import OptimizedOutput, Optimizer, OptimizerError
from terse.optimizers.build import BuildOptimizer
from terse.optimizers.docker import DockerOptimizer
from terse.optimizers.file import FileOptimizer
from terse.optimizers.generic import GenericOptimizer
from terse.optimizers.git import GitOptimizer

__all__ = [
    "Optimizer",
    "OptimizedOutput",
    "OptimizerError",
    "OptimizerRegistry",
    "GitOptimizer",
    "FileOptimizer",
    "BuildOptimizer",
    "DockerOptimizer",
    "GenericOptimizer",
    "SPECIALIZED_OPTIMIZERS",
    "build_registry",
]


# Name -> class, in selection order
SPECIALIZED_OPTIMIZERS = {
    "git": GitOptimizer,
    "file": FileOptimizer,
    "build": BuildOptimizer,
    "docker": DockerOptimizer,
}


class OptimizerRegistry:
    """Ordered optimizers with a guaranteed fallback at the end.

    Example:
        >>> registry = OptimizerRegistry([GitOptimizer()])
        >>> registry.select(CommandContext.from_command("echo hi")).name
        'generic'
    """

    def __init__(self, optimizers: Optional[Iterable[Optimizer]] = None):
        """Initialize the registry.

        Args:
            optimizers: Specialized optimizers in priority order. A fallback
                is appended when none is given.

        Raises:
            ValueError: If a fallback appears anywhere but last, or twice.
        """
        items: List[Optimizer] = list(optimizers or [])
        fallbacks = [i for i, opt in enumerate(items) if opt.is_fallback]
        if len(fallbacks) > 1:
            raise ValueError("registry accepts a single fallback optimizer")
        if fallbacks and fallbacks[0] != len(items) - 1:
            raise ValueError("the fallback optimizer must be last")
        if not fallbacks:
            items.append(GenericOptimizer())
        self._optimizers = items

    @property
    def optimizers(self) -> List[Optimizer]:
        return list(self._optimizers)

    @property
    def fallback(self) -> Optimizer:
        return self._optimizers[-1]

    def select(self, ctx: CommandContext) -> Optimizer:
        """First optimizer that handles the command (never None)."""
        for optimizer in self._optimizers:
            if optimizer.can_handle(ctx):
                return optimizer
        return self.fallback

    def find_specialized(self, ctx: CommandContext) -> Optional[Optimizer]:
        """First non-fallback optimizer that handles the command."""
        for optimizer in self._optimizers[:-1]:
            if optimizer.can_handle(ctx):
                return optimizer
        return None

    def can_handle(self, ctx: CommandContext) -> bool:
        return self.find_specialized(ctx) is not None

    def names(self) -> List[str]:
        return [optimizer.name for optimizer in self._optimizers]

    def __len__(self) -> int:
        return len(self._optimizers)


def build_registry(config=None) -> OptimizerRegistry:
    """Build the registry from configuration.

    Args:
        config: TerseConfig; `fast_path.optimizers.*` toggles which
            specialized optimizers are registered and `optimizers.*` sets
            their limits. None uses defaults.

    Returns:
        OptimizerRegistry ending with the generic fallback.
    """
    optimizers: List[Optimizer] = []
    for name, cls in SPECIALIZED_OPTIMIZERS.items():
        if config is not None and not config.fast_path.optimizers.get(name, True):
            continue
        limits = config.optimizer_limits(name) if config is not None else None
        optimizers.append(cls(limits))

    generic_limits = config.optimizer_limits("generic") if config is not None else None
    optimizers.append(GenericOptimizer(generic_limits))
    return OptimizerRegistry(optimizers)
