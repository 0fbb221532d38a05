"""Unit tests for typed settings and OmegaConf helpers."""

from __future__ import annotations

import pytest
from omegaconf import OmegaConf

from al_core import settings
from al_core.settings import ActiveLearningSettings, MonteCarloSettings, ensure_resolvers


def test_defaults_match_reference_run() -> None:
    al = ActiveLearningSettings()
    mc = MonteCarloSettings()

    assert (al.seed_per_class, al.batch_size, al.n_rounds) == (6, 12, 15)
    assert al.entropy_classes is None
    assert al.linkage == "ward"
    assert mc.trials == 100
    assert mc.metrics == ["accuracy", "macro_auc"]


def test_from_config_reads_dictconfig() -> None:
    cfg = OmegaConf.create(
        {"batch_size": 4, "entropy_classes": ["benign", "malignant"], "linkage": "average"}
    )

    al = ActiveLearningSettings.from_config(cfg)

    assert al.batch_size == 4
    assert al.entropy_classes == ["benign", "malignant"]
    assert al.linkage == "average"
    assert al.n_rounds == 15


def test_from_config_rejects_unknown_keys() -> None:
    with pytest.raises(ValueError, match=r"Unknown ActiveLearningSettings keys: \['max_rounds'\]"):
        ActiveLearningSettings.from_config({"max_rounds": 3})


@pytest.mark.parametrize(
    "values, message",
    [
        ({"seed_per_class": 0}, "seed_per_class"),
        ({"batch_size": 0}, "batch_size"),
        ({"n_rounds": -1}, "n_rounds"),
        ({"linkage": "centroid"}, "linkage"),
    ],
)
def test_active_learning_settings_validation(values, message) -> None:
    with pytest.raises(ValueError, match=message):
        ActiveLearningSettings(**values)


def test_monte_carlo_settings_validation() -> None:
    assert MonteCarloSettings.from_config(None) == MonteCarloSettings()
    assert MonteCarloSettings.from_config({"max_workers": None}).max_workers is None

    with pytest.raises(ValueError, match="trials"):
        MonteCarloSettings(trials=0)
    with pytest.raises(ValueError, match="max_workers"):
        MonteCarloSettings(max_workers=0)
    with pytest.raises(ValueError, match="metric"):
        MonteCarloSettings(metrics=[])


def test_env_resolver_reads_environment(monkeypatch) -> None:
    monkeypatch.setattr(settings, "_resolvers_registered", False)
    ensure_resolvers()
    monkeypatch.setenv("AL_DATA_DIR", "/data/breast")

    cfg = OmegaConf.create({"path": "${env:AL_DATA_DIR,data}/features.npz"})

    assert cfg.path == "/data/breast/features.npz"


def test_env_resolver_falls_back_to_default(monkeypatch) -> None:
    ensure_resolvers()
    monkeypatch.delenv("AL_DATA_DIR", raising=False)

    cfg = OmegaConf.create({"path": "${env:AL_DATA_DIR,data}/features.npz"})

    assert cfg.path == "data/features.npz"
