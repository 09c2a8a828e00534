"""
Analysis configuration.
"""

import os
from dataclasses import dataclass, field


def _default_workers() -> int:
    # Same default as concurrent.futures.ThreadPoolExecutor
    return min(32, (os.cpu_count() or 1) + 4)


@dataclass
class AnalysisConfig:
    """
    Knobs for one analysis run.

    max_workers: worker threads, one task per function
    solver_timeout_ms: per-query z3 timeout for loop range checks
    max_paths: cap on live path states per function
    verbose: print progress to stderr
    """
    max_workers: int = field(default_factory=_default_workers)
    solver_timeout_ms: int = 2000
    max_paths: int = 64
    verbose: bool = False

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.max_paths < 1:
            raise ValueError(f"max_paths must be >= 1, got {self.max_paths}")
        if self.solver_timeout_ms < 1:
            raise ValueError(f"solver_timeout_ms must be >= 1, got {self.solver_timeout_ms}")

    @classmethod
    def from_args(cls, args) -> 'AnalysisConfig':
        """Build from an argparse namespace, ignoring options left unset"""
        config = cls(verbose=bool(getattr(args, "verbose", False)))
        if getattr(args, "workers", None):
            config.max_workers = args.workers
        if getattr(args, "max_paths", None):
            config.max_paths = args.max_paths
        if getattr(args, "timeout", None):
            config.solver_timeout_ms = args.timeout
        config.__post_init__()
        return config
