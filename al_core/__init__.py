"""
Core components for diversity-aware active learning of image classifiers.

The loop, the query strategies and the Monte Carlo evaluator only rely on the
collaborator contracts of the trainer, the pseudolabeller and the evaluator.
"""

from al_core.data_loader import Case, DataLoader, LabelledSet, UnlabelledPool
from al_core.errors import (
    ActiveLearningError,
    ExhaustionError,
    LabelLookupError,
    PredictionError,
    TrainingError,
    ValidationError,
)
from al_core.experiment import ActiveLearningLoop
from al_core.initial_selection_strategies import StratifiedSeedSelection
from al_core.iteration_state import IterationResult, IterationState, LoopOutcome
from al_core.metrics_calculator import Evaluation, Evaluator
from al_core.monte_carlo import MonteCarloEvaluator, MonteCarloResult
from al_core.predictor_trainer import ClassifierTrainer, Model
from al_core.pseudolabeller import PseudoLabeller
from al_core.query_strategies import DiversitySelector, RandomSelector, SelectionBatch
from al_core.round_tracker import PerformanceTracker
from al_core.uncertainty import EntropyScorer

__all__ = [
    "ActiveLearningError",
    "ActiveLearningLoop",
    "Case",
    "ClassifierTrainer",
    "DataLoader",
    "DiversitySelector",
    "EntropyScorer",
    "Evaluation",
    "Evaluator",
    "ExhaustionError",
    "IterationResult",
    "IterationState",
    "LabelLookupError",
    "LabelledSet",
    "LoopOutcome",
    "Model",
    "MonteCarloEvaluator",
    "MonteCarloResult",
    "PerformanceTracker",
    "PredictionError",
    "PseudoLabeller",
    "RandomSelector",
    "SelectionBatch",
    "StratifiedSeedSelection",
    "TrainingError",
    "UnlabelledPool",
    "ValidationError",
]
