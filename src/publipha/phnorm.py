"""P-hacked normal effect size distribution (p-hacking model).

Under p-hacking the underlying ``Normal(theta0, tau)`` effect is pushed into a
significance bin chosen with probability ``eta[j]``: the observed effect is a
mixture, over bins, of the normal truncated to the effect-size set of that bin.
Each set is two symmetric intervals (see :func:`publipha.weights.bin_bounds`).

    f(x) = sum_j eta[j] * phi(x; theta0, tau) * 1{x in A_j} / P_j

Unlike the selected normal, ``eta`` is a simplex here.

Reference:
    Moss, Jonas and De Bin, Riccardo. "Modelling publication bias and
    p-hacking" (2019) arXiv:1911.12445
"""

import numpy as np
from scipy import special, stats

from publipha.config import DEFAULT_ALPHA
from publipha.errors import DomainError, InvalidArgument, NumericalInstability
from publipha.weights import (
    bin_bounds,
    bin_index,
    bin_log_probabilities,
    broadcast_params,
    check_alpha,
    check_eta,
    check_positive,
    check_simplex,
    log_std_normal_mass,
    unwrap,
)

_LOG_SQRT_2PI = 0.5 * np.log(2 * np.pi)


def _check_inputs(alpha, eta, tau, sigma) -> tuple[np.ndarray, np.ndarray]:
    alpha = check_alpha(alpha)
    eta = check_eta(eta, alpha)
    check_simplex(eta)
    check_positive("tau", tau)
    check_positive("sigma", sigma)
    return alpha, eta


def _std_logpdf(u: np.ndarray) -> np.ndarray:
    return -0.5 * u * u - _LOG_SQRT_2PI


def _standardized_bounds(sigma, theta0, tau, alpha) -> tuple[np.ndarray, np.ndarray]:
    lower, upper = bin_bounds(sigma, alpha)
    m = theta0[:, None, None]
    t = tau[:, None, None]
    return (lower - m) / t, (upper - m) / t


def dphnorm(x, theta0, tau, sigma, alpha=DEFAULT_ALPHA, *, eta, log: bool = False):
    """Density of the p-hacked normal.

    The log density is a log-sum-exp over the ``k - 1`` weighted component
    log densities; components whose support misses ``x`` contribute ``-inf``.

    Raises:
        InvalidArgument: On malformed inputs or if ``eta`` does not sum to 1.
    """
    alpha, eta = _check_inputs(alpha, eta, tau, sigma)
    params, scalar = broadcast_params(x=x, theta0=theta0, tau=tau, sigma=sigma)
    x, theta0, tau, sigma = (params[k] for k in ("x", "theta0", "tau", "sigma"))

    log_p = bin_log_probabilities(sigma, theta0, tau, alpha)
    member = bin_index(sigma, x, alpha)[:, None] == np.arange(eta.size)

    with np.errstate(divide="ignore", invalid="ignore"):
        log_comp = np.log(eta) + stats.norm.logpdf(x, theta0, tau)[:, None] - log_p
        out = special.logsumexp(np.where(member, log_comp, -np.inf), axis=1)

    if not log:
        out = np.exp(out)
    return unwrap(out, scalar)


def rphnorm(
    n,
    theta0,
    tau,
    sigma,
    alpha=DEFAULT_ALPHA,
    *,
    eta,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Draw from the p-hacked normal.

    Picks a bin with probability ``eta[j]``, one of its two intervals in
    proportion to the normal mass it holds, and draws from the normal
    truncated to that interval.
    """
    alpha, eta = _check_inputs(alpha, eta, tau, sigma)
    if np.ndim(n) > 0:
        n = len(n)
    n = int(n)
    if n < 0:
        raise InvalidArgument(f"n must be non-negative, got {n}")

    params, _ = broadcast_params(size=n, theta0=theta0, tau=tau, sigma=sigma)
    theta0, tau, sigma = params["theta0"], params["tau"], params["sigma"]
    rng = np.random.default_rng(rng)
    if n == 0:
        return np.empty(0)

    component = rng.choice(eta.size, size=n, p=eta / eta.sum())
    a, b = _standardized_bounds(sigma, theta0, tau, alpha)
    rows = np.arange(n)
    a, b = a[rows, component], b[rows, component]  # (n, 2)

    log_mass = log_std_normal_mass(a, b)
    with np.errstate(invalid="ignore"):
        p_negative = np.exp(log_mass[:, 0] - np.logaddexp(log_mass[:, 0], log_mass[:, 1]))
    if not np.all(np.isfinite(p_negative)):
        msg = "a selected bin has no normal mass; cannot draw from it"
        raise DomainError(msg)

    piece = (rng.uniform(size=n) >= p_negative).astype(int)
    return stats.truncnorm.rvs(
        a[rows, piece], b[rows, piece], loc=theta0, scale=tau, size=n, random_state=rng
    )


def ephnorm(theta0, tau, sigma, alpha=DEFAULT_ALPHA, *, eta):
    """Mean of the p-hacked normal in closed form.

    Component ``j`` has mean ``theta0 + tau * sum(phi(a) - phi(b)) / P_j`` over
    its two standardized intervals ``[a, b]``. The density-over-mass ratios are
    taken in log space so far-tail bins do not cancel.

    Raises:
        NumericalInstability: If a weighted component has no representable mass.
    """
    alpha, eta = _check_inputs(alpha, eta, tau, sigma)
    params, scalar = broadcast_params(theta0=theta0, tau=tau, sigma=sigma)
    theta0, tau, sigma = params["theta0"], params["tau"], params["sigma"]

    a, b = _standardized_bounds(sigma, theta0, tau, alpha)
    log_p = np.logaddexp(*np.moveaxis(log_std_normal_mass(a, b), -1, 0))[..., None]

    with np.errstate(invalid="ignore", over="ignore"):
        ratio = np.exp(_std_logpdf(a) - log_p) - np.exp(_std_logpdf(b) - log_p)
        means = theta0[:, None] + tau[:, None] * ratio.sum(axis=-1)
    out = np.sum(np.where(eta > 0, eta * means, 0.0), axis=-1)

    if not np.all(np.isfinite(out)):
        msg = (
            "truncated component mean is not finite; a weighted bin has no mass "
            f"(theta0={theta0.tolist()}, tau={tau.tolist()}, sigma={sigma.tolist()})"
        )
        raise NumericalInstability(msg)
    return unwrap(out, scalar)
