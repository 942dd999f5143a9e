"""Bayesian random-effects meta-analysis with bias correction.

Three regimes (see :class:`publipha.model_spec.Bias`):

1. publication selection: Hedges (1992) selection model. Bin publication
   probabilities ``eta`` are forced to be decreasing: ``eta_raw ~
   Dirichlet(eta0)`` and ``eta`` is its reverse cumulative sum, so
   ``eta[0] = 1`` for the most significant bin.
2. p-hacking: Moss & De Bin (2019). ``eta ~ Dirichlet(eta0)`` are the
   p-hacking mixture weights.
3. none: classical random-effects meta-analysis.

Model (non-centered):
    theta0 ~ Normal(theta0_mean, theta0_sd)
    tau ~ tau prior (half-normal / uniform / inverse gamma)
    theta_offset ~ Normal(0, 1) per study
    theta = theta0 + tau * theta_offset
    yi | theta ~ kernel(theta, sqrt(vi), alpha, eta)

The graph is built with PyMC and sampled with nutpie's Rust NUTS.

Usage:
    fit = psma(yi, vi, alpha=(0, 0.025, 0.05, 1))
    fit = ma("yi", "vi", bias="p-hacking", data=df, prior={"theta0_sd": 10})
    fits = allma(yi, vi)          # {"phma": ..., "psma": ..., "cma": ...}
"""

import time
from collections.abc import Mapping
from dataclasses import dataclass, replace

import arviz as az
import numpy as np
import nutpie
import polars as pl
import pymc as pm
import pytensor.tensor as pt

from publipha.config import DEFAULT_ALPHA, N_CHAINS, N_SAMPLES, N_TUNE, RANDOM_SEED
from publipha.errors import InvalidArgument
from publipha.likelihood import KERNELS
from publipha.model_spec import Bias, PriorSpec, resolve_bias
from publipha.weights import check_alpha

PARAMETER_VARS = ("theta0", "tau")


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


# ── Fitted model record ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class MAFit:
    """Posterior draws plus everything needed to reproduce the fit."""

    idata: az.InferenceData
    bias: Bias
    alpha: np.ndarray
    yi: np.ndarray
    vi: np.ndarray
    prior: PriorSpec
    sampling_time: float = 0.0

    @property
    def var_names(self) -> list[str]:
        names = list(PARAMETER_VARS)
        if self.bias is not Bias.NONE:
            names.append("eta")
        return names

    def summary(self, var_names: list[str] | None = None, **kwargs):
        """ArviZ posterior summary of the population-level parameters."""
        return az.summary(self.idata, var_names=var_names or self.var_names, **kwargs)

    def posterior_mean(self, var: str):
        """Posterior mean of ``var`` over chains and draws (float or array)."""
        if var not in self.idata.posterior:
            msg = f"{var!r} not in posterior; available: {list(self.idata.posterior.data_vars)}"
            raise KeyError(msg)
        values = self.idata.posterior[var].mean(dim=("chain", "draw")).values
        return float(values) if values.ndim == 0 else values


# ── Inputs ───────────────────────────────────────────────────────────────────


def _column(value, data, name: str) -> np.ndarray:
    if isinstance(value, str):
        if data is None:
            msg = f"{name}={value!r} is a column name but no data was given"
            raise InvalidArgument(msg)
        columns = data.columns if isinstance(data, pl.DataFrame) else list(data)
        if value not in columns:
            msg = f"column {value!r} not found in data; available: {list(columns)}"
            raise InvalidArgument(msg)
        value = data[value]
    if isinstance(value, pl.Series):
        value = value.to_numpy()
    return np.asarray(value, dtype=float)


def resolve_data(
    yi, vi, data: pl.DataFrame | Mapping | None = None
) -> tuple[np.ndarray, np.ndarray]:
    """Turn effect sizes and variances (arrays or column names) into arrays.

    Raises:
        InvalidArgument: On length mismatch, empty input, non-finite values or
            non-positive variances.
    """
    yi = _column(yi, data, "yi")
    vi = _column(vi, data, "vi")
    if yi.ndim != 1 or vi.ndim != 1 or yi.size != vi.size:
        msg = f"yi and vi must be 1-d of equal length, got shapes {yi.shape} and {vi.shape}"
        raise InvalidArgument(msg)
    if yi.size == 0:
        raise InvalidArgument("need at least one study")
    if not np.all(np.isfinite(yi)) or not np.all(np.isfinite(vi)):
        raise InvalidArgument("yi and vi must be finite")
    if np.any(vi <= 0):
        raise InvalidArgument("sampling variances vi must be strictly positive")
    return yi, vi


def prepare_alpha(alpha) -> np.ndarray:
    """Sort the cutoffs, then validate them."""
    return check_alpha(np.sort(np.asarray(alpha, dtype=float)))


def _bin_labels(alpha: np.ndarray) -> list[str]:
    labels = [f"[{lo:g}, {hi:g})" for lo, hi in zip(alpha[:-1], alpha[1:], strict=True)]
    labels[-1] = labels[-1][:-1] + "]"
    return labels


# ── Model ────────────────────────────────────────────────────────────────────


def build_graph(
    yi: np.ndarray,
    vi: np.ndarray,
    bias: Bias | str = Bias.PUBLICATION_SELECTION,
    alpha=DEFAULT_ALPHA,
    prior: PriorSpec | None = None,
) -> pm.Model:
    """Build the meta-analysis model graph (no sampling).

    The likelihood kernel is picked from ``KERNELS`` here, once per model.

    Returns the PyMC model for use with nutpie or pm.sample().
    """
    bias = resolve_bias(bias)
    alpha = prepare_alpha(alpha)
    prior = prior or PriorSpec()
    yi, vi = resolve_data(yi, vi)
    kernel = KERNELS[bias]
    sigma = np.sqrt(vi)

    coords = {"study": np.arange(yi.size), "bin": _bin_labels(alpha)}

    with pm.Model(coords=coords) as model:
        theta0 = pm.Normal("theta0", mu=prior.theta0_mean, sigma=prior.theta0_sd)
        tau = prior.build_tau()

        theta_offset = pm.Normal("theta_offset", mu=0, sigma=1, dims="study")
        theta = pm.Deterministic("theta", theta0 + tau * theta_offset, dims="study")

        match bias:
            case Bias.PUBLICATION_SELECTION:
                eta0 = prior.eta0_for(alpha.size - 1)
                eta_raw = pm.Dirichlet("eta_raw", a=eta0, dims="bin")
                # Reverse cumulative sum: decreasing, eta[0] = 1
                eta = pm.Deterministic("eta", pt.cumsum(eta_raw[::-1])[::-1], dims="bin")
            case Bias.P_HACKING:
                eta0 = prior.eta0_for(alpha.size - 1)
                eta = pm.Dirichlet("eta", a=eta0, dims="bin")
            case _:
                eta = None

        pm.Potential("yi_loglik", kernel(yi, theta, sigma, alpha, eta))

    return model


def ma(
    yi,
    vi,
    bias: Bias | str = Bias.PUBLICATION_SELECTION,
    data: pl.DataFrame | Mapping | None = None,
    alpha=DEFAULT_ALPHA,
    prior: PriorSpec | dict | None = None,
    tau_prior: str | None = None,
    n_samples: int = N_SAMPLES,
    n_tune: int = N_TUNE,
    n_chains: int = N_CHAINS,
    seed: int = RANDOM_SEED,
    progress_bar: bool = True,
) -> MAFit:
    """Bayesian meta-analysis correcting for publication bias or p-hacking.

    Args:
        yi: Effect size estimates, or a column name in ``data``.
        vi: Sampling variances, or a column name in ``data``.
        bias: "publication selection", "p-hacking" or "none" (or
            psma/phma/cma).
        data: Optional polars DataFrame or mapping holding ``yi``/``vi``.
        alpha: Significance cutoffs; sorted before use.
        prior: ``PriorSpec`` or a dict of overrides. Unknown keys raise.
        tau_prior: "half-normal", "uniform" or "inv_gamma"; overrides the
            prior's own ``tau_prior``.
        n_samples, n_tune, n_chains, seed: nutpie sampler settings.

    Returns:
        MAFit with the posterior InferenceData and the inputs.
    """
    bias = resolve_bias(bias)
    yi, vi = resolve_data(yi, vi, data)
    alpha = prepare_alpha(alpha)
    if isinstance(prior, PriorSpec):
        spec = replace(prior, tau_prior=tau_prior) if tau_prior is not None else prior
    else:
        spec = PriorSpec.from_dict(prior, tau_prior=tau_prior)

    print_header(f"META-ANALYSIS — {bias.value} ({bias.short_name})")
    print(f"  Studies: {yi.size}")
    if bias is not Bias.NONE:
        print(f"  Cutoffs: {alpha.tolist()}")
    print(f"  Priors:  {spec.describe()}")

    model = build_graph(yi, vi, bias, alpha, spec)

    print("  Compiling model with nutpie...")
    compiled = nutpie.compile_pymc_model(model)

    print(f"  Sampling: {n_samples} draws, {n_tune} tune, {n_chains} chains")
    print(f"  seed={seed}, sampler=nutpie (Rust NUTS)")

    t0 = time.time()
    idata = nutpie.sample(
        compiled,
        draws=n_samples,
        tune=n_tune,
        chains=n_chains,
        seed=seed,
        progress_bar=progress_bar,
        store_divergences=True,
    )
    sampling_time = time.time() - t0
    print(f"  Sampling complete in {sampling_time:.1f}s")

    return MAFit(
        idata=idata,
        bias=bias,
        alpha=alpha,
        yi=yi,
        vi=vi,
        prior=spec,
        sampling_time=sampling_time,
    )


def psma(yi, vi, data=None, alpha=DEFAULT_ALPHA, prior=None, tau_prior=None, **kwargs) -> MAFit:
    """``ma`` with ``bias="publication selection"``."""
    return ma(yi, vi, Bias.PUBLICATION_SELECTION, data, alpha, prior, tau_prior, **kwargs)


def phma(yi, vi, data=None, alpha=DEFAULT_ALPHA, prior=None, tau_prior=None, **kwargs) -> MAFit:
    """``ma`` with ``bias="p-hacking"``."""
    return ma(yi, vi, Bias.P_HACKING, data, alpha, prior, tau_prior, **kwargs)


def cma(yi, vi, data=None, prior=None, tau_prior=None, **kwargs) -> MAFit:
    """``ma`` with ``bias="none"``."""
    return ma(yi, vi, Bias.NONE, data, DEFAULT_ALPHA, prior, tau_prior, **kwargs)


def allma(
    yi, vi, data=None, alpha=DEFAULT_ALPHA, prior=None, tau_prior=None, **kwargs
) -> dict[str, MAFit]:
    """Run all three regimes; keys are "phma", "psma" and "cma"."""
    return {
        "phma": phma(yi, vi, data, alpha, prior, tau_prior, **kwargs),
        "psma": psma(yi, vi, data, alpha, prior, tau_prior, **kwargs),
        "cma": cma(yi, vi, data, prior, tau_prior, **kwargs),
    }
