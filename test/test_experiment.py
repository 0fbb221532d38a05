"""
Tests for the ActiveLearningLoop state machine.
"""

import numpy as np
import pytest
from sklearn.linear_model import LogisticRegression
from sklearn.preprocessing import StandardScaler

from al_core.data_loader import Case, LabelledSet, UnlabelledPool
from al_core.errors import ExhaustionError, LabelLookupError, ValidationError
from al_core.experiment import ActiveLearningLoop
from al_core.initial_selection_strategies import StratifiedSeedSelection
from al_core.iteration_state import LoopPhase
from al_core.predictor_trainer import ClassifierTrainer
from al_core.pseudolabeller import PseudoLabeller
from al_core.query_strategies import RandomSelector

CLASSES = ("benign", "malignant", "normal")
CENTERS = np.array(
    [
        [0.0, 0.0, 0.0, 0.0],
        [2.5, 2.5, 0.0, 0.0],
        [0.0, 2.5, 2.5, 0.0],
    ]
)


def _make_data(labelled_per_class=12, n_unlabelled=200, seed=0):
    rng = np.random.default_rng(seed)
    labelled = []
    for class_idx, name in enumerate(CLASSES):
        for i in range(labelled_per_class):
            features = CENTERS[class_idx] + rng.normal(size=4)
            labelled.append(Case(f"labelled/{name}_{i}.png", features, name))

    unlabelled = []
    lookup = {}
    for i in range(n_unlabelled):
        class_idx = int(rng.integers(len(CLASSES)))
        case_id = f"pool/img_{i}.png"
        unlabelled.append(Case(case_id, CENTERS[class_idx] + rng.normal(size=4)))
        lookup[case_id] = CLASSES[class_idx]
    return LabelledSet(tuple(labelled)), UnlabelledPool(tuple(unlabelled)), lookup


def _make_loop(lookup, batch_size=12, n_rounds=15, selector=None):
    trainer = ClassifierTrainer(
        LogisticRegression(max_iter=1000),
        feature_transform=[("scaler", StandardScaler())],
    )
    return ActiveLearningLoop(
        trainer,
        PseudoLabeller(lookup),
        selector=selector,
        batch_size=batch_size,
        n_rounds=n_rounds,
    )


def _seed_selection(seed=0, per_class=6):
    return StratifiedSeedSelection(per_class, np.random.default_rng(seed))


class TestActiveLearningLoop:
    def test_full_run_grows_labelled_set_by_batch_each_round(self):
        labelled_pool, pool, lookup = _make_data()
        loop = _make_loop(lookup)

        outcome = loop.run(labelled_pool, pool, _seed_selection())

        assert len(outcome.seed_set) == 18
        assert len(outcome.labelled) == 18 + 15 * 12 == 198
        assert len(outcome.results) == 15
        assert [result.iteration for result in outcome.results] == list(range(15))
        for i, result in enumerate(outcome.results):
            assert result.training_size == 18 + 12 * i
            assert result.labelled_size == result.training_size + len(result.batch)
            assert len(result.batch) == 12
        assert outcome.state.phase == LoopPhase.TERMINAL
        assert len(loop.tracker.rounds) == 15
        assert 0.0 <= outcome.final_evaluation.summary["accuracy"] <= 1.0

    def test_selected_ids_never_repeat_and_avoid_test_set(self):
        labelled_pool, pool, lookup = _make_data()
        loop = _make_loop(lookup, n_rounds=10)

        outcome = loop.run(labelled_pool, pool, _seed_selection(seed=3))

        selected = [cid for result in outcome.results for cid in result.batch.case_ids]
        assert len(selected) == len(set(selected)) == 120
        assert not set(selected) & outcome.test_set.ids
        assert set(selected) <= pool.ids
        assert outcome.state.evaluated == frozenset(selected)
        assert not outcome.test_set.ids & outcome.labelled.ids

    def test_selected_cases_carry_pseudolabels(self):
        labelled_pool, pool, lookup = _make_data()
        loop = _make_loop(lookup, n_rounds=2)

        outcome = loop.run(labelled_pool, pool, _seed_selection())

        added = outcome.labelled.cases[len(outcome.seed_set):]
        assert all(case.label == lookup[case.case_id] for case in added)

    def test_partial_last_batch_then_exhaustion(self):
        labelled_pool, pool, lookup = _make_data(n_unlabelled=20)
        loop = _make_loop(lookup, n_rounds=3)

        with pytest.raises(ExhaustionError) as excinfo:
            loop.run(labelled_pool, pool, _seed_selection())

        assert excinfo.value.iteration == 2
        assert "iteration=2" in str(excinfo.value)
        assert [row["batch_size"] for row in loop.tracker.rounds] == [12, 8]

    def test_missing_pseudolabel_aborts_without_mutation(self):
        labelled_pool, pool, lookup = _make_data()
        loop = _make_loop(lookup, n_rounds=3)
        state = loop.initialize(labelled_pool, pool, _seed_selection())
        state = loop.run_round(state)

        loop.labeller = PseudoLabeller({})
        with pytest.raises(LookupError) as excinfo:
            loop.run_round(state)

        assert isinstance(excinfo.value, LabelLookupError)
        assert len(state.labelled) == 30
        assert len(state.evaluated) == 12
        assert len(state.results) == 1
        assert len(loop.tracker.rounds) == 1

    def test_run_reports_failing_round(self):
        labelled_pool, pool, _ = _make_data()
        loop = _make_loop({}, n_rounds=2)

        with pytest.raises(LabelLookupError) as excinfo:
            loop.run(labelled_pool, pool, _seed_selection())

        assert excinfo.value.iteration == 0

    def test_overlapping_pool_is_rejected(self):
        labelled_pool, pool, lookup = _make_data()
        leaked = UnlabelledPool(pool.cases + (Case(labelled_pool.cases[0].case_id, [0.0] * 4),))
        loop = _make_loop(lookup)

        with pytest.raises(ValidationError, match="also appear in the unlabelled pool"):
            loop.initialize(labelled_pool, leaked, _seed_selection())

    def test_zero_rounds_evaluates_seed_model(self):
        labelled_pool, pool, lookup = _make_data()
        loop = _make_loop(lookup, n_rounds=0)

        outcome = loop.run(labelled_pool, pool, _seed_selection())

        assert outcome.results == ()
        assert len(outcome.labelled) == 18
        assert outcome.selected_count == 0

    def test_random_selector_baseline_run(self):
        labelled_pool, pool, lookup = _make_data()
        loop = _make_loop(
            lookup, n_rounds=4, selector=RandomSelector(np.random.default_rng(1))
        )

        outcome = loop.run(labelled_pool, pool, _seed_selection())

        assert len(outcome.labelled) == 18 + 4 * 12
        assert all(item.entropy is None for item in outcome.results[0].batch)

    def test_run_round_requires_initialize(self):
        labelled_pool, _, lookup = _make_data()
        loop = _make_loop(lookup)
        from al_core.iteration_state import IterationState

        with pytest.raises(RuntimeError):
            loop.run_round(IterationState(labelled=labelled_pool))
