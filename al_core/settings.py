"""Typed settings and OmegaConf helpers for active learning runs."""

import os
from dataclasses import dataclass, field, fields
from typing import Any, List, Optional

from omegaconf import DictConfig, OmegaConf

from al_core.query_strategies import LINKAGES

_resolvers_registered = False


def ensure_resolvers() -> None:
    """Register custom OmegaConf resolvers once."""
    global _resolvers_registered
    if _resolvers_registered:
        return

    get_resolver_names = getattr(OmegaConf, "get_resolver_names", None)
    env_registered = (
        "env" in get_resolver_names()
        if callable(get_resolver_names)
        else OmegaConf.has_resolver("env")
    )
    if not env_registered:
        OmegaConf.register_new_resolver(
            "env",
            lambda key, default=None: os.environ.get(key, default),
            use_cache=False,
        )

    _resolvers_registered = True


def _to_dict(cfg: Any) -> dict:
    if cfg is None:
        return {}
    if isinstance(cfg, DictConfig):
        return OmegaConf.to_container(cfg, resolve=True)
    return dict(cfg)


def _check_keys(cls, values: dict) -> None:
    known = {item.name for item in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {unknown}")


@dataclass
class ActiveLearningSettings:
    """
    Settings of the active learning loop.

    Attributes:
        seed_per_class: Seed cases drawn per class before the first round
        batch_size: Cases labelled per round
        n_rounds: Number of rounds
        entropy_classes: Classes scored by the entropy, None for all classes
        entropy_base: Logarithm base of the entropy, None for natural log
        linkage: Agglomerative clustering linkage
        n_jobs: Workers for pairwise distance computation
        output_dir: Directory receiving results
    """

    seed_per_class: int = 6
    batch_size: int = 12
    n_rounds: int = 15
    entropy_classes: Optional[List[str]] = None
    entropy_base: Optional[float] = None
    linkage: str = "ward"
    n_jobs: Optional[int] = None
    output_dir: str = "outputs"

    def __post_init__(self) -> None:
        if self.seed_per_class < 1:
            raise ValueError("seed_per_class must be >= 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.n_rounds < 0:
            raise ValueError("n_rounds must be >= 0")
        if self.linkage not in LINKAGES:
            raise ValueError(f"linkage must be one of {LINKAGES}, got '{self.linkage}'")
        if self.entropy_classes is not None:
            self.entropy_classes = [str(name) for name in self.entropy_classes]

    @classmethod
    def from_config(cls, cfg: Any) -> "ActiveLearningSettings":
        values = _to_dict(cfg)
        _check_keys(cls, values)
        return cls(**values)


@dataclass
class MonteCarloSettings:
    """
    Settings of the Monte Carlo comparison.

    Attributes:
        enabled: Run the comparison after the active learning run
        trials: Number of random-selection trials
        max_workers: Worker processes, None for every available CPU
        metrics: Summary metrics to compute P-values for
    """

    enabled: bool = True
    trials: int = 100
    max_workers: Optional[int] = 1
    metrics: List[str] = field(default_factory=lambda: ["accuracy", "macro_auc"])

    def __post_init__(self) -> None:
        if self.trials < 1:
            raise ValueError("trials must be >= 1")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError("max_workers must be >= 1 or null")
        if not self.metrics:
            raise ValueError("At least one Monte Carlo metric is required")

    @classmethod
    def from_config(cls, cfg: Any) -> "MonteCarloSettings":
        values = _to_dict(cfg)
        _check_keys(cls, values)
        return cls(**values)
