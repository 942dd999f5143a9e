"""Selected normal effect size distribution (publication selection model).

The observed effect is ``Normal(theta0, tau)`` filtered by publication: a value
whose two-sided p-value lands in bin ``j`` is published with relative
probability ``eta[j]``. The density is

    f(x) = weight(sigma, x, alpha, eta) * phi(x; theta0, tau) / Z

with ``Z`` from :func:`publipha.weights.normalizer`.

References:
    Hedges, Larry V. "Modeling publication selection effects in meta-analysis."
    Statistical Science (1992): 246-255.

    Moss, Jonas and De Bin, Riccardo. "Modelling publication bias and
    p-hacking" (2019) arXiv:1911.12445
"""

import numpy as np
from scipy import stats

from publipha.config import DEFAULT_ALPHA, MAX_PROPOSALS
from publipha.errors import DomainError, InvalidArgument, SamplingStalled
from publipha.weights import (
    broadcast_params,
    check_alpha,
    check_eta,
    check_positive,
    integrate_weighted,
    lookup_weight,
    normalizers,
    std_normal_pdf,
    unwrap,
)


def _check_inputs(alpha, eta, tau, sigma) -> tuple[np.ndarray, np.ndarray]:
    alpha = check_alpha(alpha)
    eta = check_eta(eta, alpha)
    check_positive("tau", tau)
    check_positive("sigma", sigma)
    return alpha, eta


def dsnorm(x, theta0, tau, sigma, alpha=DEFAULT_ALPHA, *, eta, log: bool = False):
    """Density of the selected normal.

    ``x``, ``theta0``, ``tau`` and ``sigma`` broadcast against each other
    (each of length 1 or a common ``N``).

    Args:
        x: Quantiles.
        theta0: Mean of the underlying normal.
        tau: Standard deviation of the underlying normal (heterogeneity).
        sigma: Study standard deviation, used to turn ``x`` into a p-value.
        alpha: Significance cutoffs.
        eta: Relative publication probability of each bin.
        log: Return the log density, computed term by term.

    Raises:
        InvalidArgument: On malformed ``alpha``/``eta`` or non-positive scales.
        DomainError: If every ``eta`` is zero.
    """
    alpha, eta = _check_inputs(alpha, eta, tau, sigma)
    if not np.any(eta > 0):
        raise DomainError("every eta is zero: the selected density has no mass")

    params, scalar = broadcast_params(x=x, theta0=theta0, tau=tau, sigma=sigma)
    x, theta0, tau, sigma = (params[k] for k in ("x", "theta0", "tau", "sigma"))

    z = normalizers(sigma, theta0, tau, alpha, eta)
    w = lookup_weight(sigma, x, alpha, eta)

    if log:
        with np.errstate(divide="ignore"):
            out = np.log(w) + stats.norm.logpdf(x, theta0, tau) - np.log(z)
    else:
        out = w * stats.norm.pdf(x, theta0, tau) / z
    return unwrap(out, scalar)


def rsnorm(
    n,
    theta0,
    tau,
    sigma,
    alpha=DEFAULT_ALPHA,
    *,
    eta,
    rng: np.random.Generator | int | None = None,
    max_proposals: int = MAX_PROPOSALS,
) -> np.ndarray:
    """Draw from the selected normal by rejection sampling.

    Each draw proposes ``theta ~ Normal(theta0, tau)`` and then a uniform
    ``u``; the proposal is accepted when ``weight > u``. When some ``eta`` is
    above 1 the weight is divided by ``max(eta)`` first, so the acceptance
    probability stays in [0, 1] and the target distribution is unchanged.

    Args:
        n: Number of draws. A sequence means ``len(n)`` draws.
        theta0, tau, sigma: Length 1 or ``n``.
        rng: ``numpy.random.Generator`` or a seed for one.
        max_proposals: Proposal budget per draw.

    Raises:
        SamplingStalled: If a draw uses ``max_proposals`` proposals without an
            acceptance.
    """
    alpha, eta = _check_inputs(alpha, eta, tau, sigma)
    if np.ndim(n) > 0:
        n = len(n)
    n = int(n)
    if n < 0:
        raise InvalidArgument(f"n must be non-negative, got {n}")
    if not eta.max() > 0:
        raise DomainError("every eta is zero: the selected density has no mass")

    params, _ = broadcast_params(size=n, theta0=theta0, tau=tau, sigma=sigma)
    theta0, tau, sigma = params["theta0"], params["tau"], params["sigma"]
    scale = max(1.0, float(eta.max()))
    rng = np.random.default_rng(rng)

    samples = np.empty(n)
    for i in range(n):
        for _ in range(max_proposals):
            proposal = rng.normal(theta0[i], tau[i])
            probability = lookup_weight(sigma[i], proposal, alpha, eta) / scale
            if probability > rng.uniform():
                samples[i] = proposal
                break
        else:
            msg = (
                f"no proposal accepted after {max_proposals} tries for draw {i} "
                f"(theta0={theta0[i]}, tau={tau[i]}, sigma={sigma[i]}, eta={eta.tolist()})"
            )
            raise SamplingStalled(msg)

    return samples


def esnorm(theta0, tau, sigma, alpha=DEFAULT_ALPHA, *, eta):
    """Mean of the selected normal by adaptive quadrature.

    Vectorized over ``theta0``, ``tau`` and ``sigma``.
    """
    alpha, eta = _check_inputs(alpha, eta, tau, sigma)
    if not np.any(eta > 0):
        raise DomainError("every eta is zero: the selected density has no mass")

    params, scalar = broadcast_params(theta0=theta0, tau=tau, sigma=sigma)
    theta0, tau, sigma = params["theta0"], params["tau"], params["sigma"]
    z = normalizers(sigma, theta0, tau, alpha, eta)

    out = np.empty(z.size)
    for i in range(z.size):
        m, t = theta0[i], tau[i]

        def integrand(u: float, m: float = m, t: float = t) -> float:
            return (m + t * u) * std_normal_pdf(u)

        out[i] = integrate_weighted(integrand, sigma[i], m, t, alpha, eta) / z[i]
    return unwrap(out, scalar)
