"""Shared fixtures for publipha tests.

Provides the default significance cutoffs, a decreasing publication weight
vector, a p-hacking simplex and a seeded random generator, plus a factory for
fitted-model records over a synthetic posterior so no test runs a sampler.
"""

import arviz as az
import numpy as np
import pytest

from publipha.ma import MAFit
from publipha.model_spec import Bias, PriorSpec

# ── Cutoff and weight fixtures ───────────────────────────────────────────────


@pytest.fixture
def alpha() -> list[float]:
    """Bins [0, .025), [.025, .05), [.05, 1]."""
    return [0.0, 0.025, 0.05, 1.0]


@pytest.fixture
def eta_selection() -> list[float]:
    """Publication weights: significant results three times as likely."""
    return [3.0, 2.0, 1.0]


@pytest.fixture
def eta_simplex() -> list[float]:
    """P-hacking mixture weights (sum to 1)."""
    return [0.5, 0.3, 0.2]


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(20191127)


# ── Fitted model fixtures ────────────────────────────────────────────────────

YI = np.array([0.31, 0.12, 0.45, -0.05, 0.22, 0.6])
VI = np.array([0.02, 0.05, 0.03, 0.04, 0.01, 0.09])
BIN_LABELS = ["[0, 0.025)", "[0.025, 0.05)", "[0.05, 1]"]


@pytest.fixture
def make_fit():
    """Factory for MAFit records over a synthetic posterior (2 chains x 100 draws)."""

    def _make(bias: Bias = Bias.P_HACKING, seed: int = 0) -> MAFit:
        rng = np.random.default_rng(seed)
        posterior = {
            "theta0": rng.normal(0.2, 0.05, size=(2, 100)),
            "tau": np.abs(rng.normal(0.1, 0.02, size=(2, 100))),
        }
        dims = {}
        if bias is not Bias.NONE:
            posterior["eta"] = rng.dirichlet(np.ones(3), size=(2, 100))
            dims["eta"] = ["bin"]
        idata = az.from_dict(posterior=posterior, coords={"bin": BIN_LABELS}, dims=dims)
        return MAFit(
            idata=idata,
            bias=bias,
            alpha=np.array([0.0, 0.025, 0.05, 1.0]),
            yi=YI,
            vi=VI,
            prior=PriorSpec(),
            sampling_time=1.5,
        )

    return _make
