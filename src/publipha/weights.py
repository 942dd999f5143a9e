"""Selection weights, bin geometry and normalizing constants.

A study with sampling standard deviation ``sigma`` reporting the estimate ``x``
has the two-sided p-value ``p = 2 * (1 - Phi(|x| / sigma))``. The cutoffs
``alpha`` (``alpha[0] = 0``, ``alpha[-1] = 1``, strictly increasing) split
[0, 1] into ``k - 1`` bins. Bins are half-open, ``alpha[j] <= p < alpha[j + 1]``,
except the last one, which is closed at ``p = 1``. ``eta[j]`` is the weight of
bin ``j``.

In effect-size space bin ``j`` is the symmetric pair of intervals

    sigma * z[j + 1] < |x| <= sigma * z[j],    z[j] = Phi^-1(1 - alpha[j] / 2)

so ``z[0] = inf`` and ``z[-1] = 0``. Everything here is pure and element-wise;
scalar inputs give Python floats back, array inputs give ``numpy`` arrays.
"""

import math
from collections.abc import Callable

import numpy as np
from scipy import integrate, special, stats

from publipha.config import QUAD_EPSABS, QUAD_EPSREL, QUAD_LIMIT, QUAD_U_MAX, SIMPLEX_TOL
from publipha.errors import DomainError, InvalidArgument, NumericalInstability

_LOG_SQRT_2PI = 0.5 * math.log(2 * math.pi)

# ── Validation ───────────────────────────────────────────────────────────────


def check_alpha(alpha) -> np.ndarray:
    """Validate a significance partition and return it as a float array."""
    alpha = np.asarray(alpha, dtype=float)
    if alpha.ndim != 1 or alpha.size < 2:
        msg = f"alpha must be a 1-d sequence of at least 2 cutoffs, got {alpha.tolist()!r}"
        raise InvalidArgument(msg)
    if alpha[0] != 0.0 or alpha[-1] != 1.0:
        msg = f"alpha must start at 0 and end at 1, got {alpha.tolist()!r}"
        raise InvalidArgument(msg)
    if np.any(np.diff(alpha) <= 0):
        msg = f"alpha must be strictly increasing, got {alpha.tolist()!r}"
        raise InvalidArgument(msg)
    return alpha


def check_eta(eta, alpha: np.ndarray) -> np.ndarray:
    """Validate a weight vector against its (already checked) partition."""
    eta = np.asarray(eta, dtype=float)
    if eta.ndim != 1 or eta.size != alpha.size - 1:
        msg = (
            f"eta must have length len(alpha) - 1 = {alpha.size - 1}, "
            f"got {np.atleast_1d(eta).tolist()!r}"
        )
        raise InvalidArgument(msg)
    if not np.all(np.isfinite(eta)) or np.any(eta < 0):
        msg = f"eta must be finite and non-negative, got {eta.tolist()!r}"
        raise InvalidArgument(msg)
    return eta


def check_simplex(eta: np.ndarray, tol: float = SIMPLEX_TOL) -> None:
    """Mixture weights must sum to one. No silent renormalization."""
    total = float(np.sum(eta))
    if abs(total - 1.0) > tol:
        msg = f"mixture weights eta must sum to 1, got sum {total!r} for {eta.tolist()!r}"
        raise InvalidArgument(msg)


def check_positive(name: str, value) -> None:
    arr = np.asarray(value, dtype=float)
    if not np.all(np.isfinite(arr)) or np.any(arr <= 0):
        msg = f"{name} must be finite and strictly positive, got {arr.tolist()!r}"
        raise InvalidArgument(msg)


def broadcast_params(size: int | None = None, **params) -> tuple[dict[str, np.ndarray], bool]:
    """Materialize scalar-or-vector parameters to a common length.

    Every parameter must have length 1 or the common length ``N`` (the largest
    length seen, or ``size`` when given). Anything else is an error; nothing is
    recycled.

    Returns:
        (arrays, scalar) where ``arrays`` maps each name to a 1-d array of
        length ``N`` and ``scalar`` is True when every input was a 0-d value.
    """
    arrays: dict[str, np.ndarray] = {}
    for name, value in params.items():
        arr = np.asarray(value, dtype=float)
        if arr.ndim > 1:
            msg = f"{name} must be a scalar or 1-d sequence, got shape {arr.shape}"
            raise InvalidArgument(msg)
        arrays[name] = np.atleast_1d(arr)

    scalar = size is None and all(np.ndim(v) == 0 for v in params.values())
    n = size if size is not None else max(arr.size for arr in arrays.values())

    bad = {name: arr.size for name, arr in arrays.items() if arr.size not in (1, n)}
    if bad:
        msg = f"parameter lengths must be 1 or {n}, got {bad}"
        raise InvalidArgument(msg)

    return {name: np.broadcast_to(arr, (n,)) for name, arr in arrays.items()}, scalar


def unwrap(result: np.ndarray, scalar: bool):
    """Return a Python float for scalar calls, the array otherwise."""
    return float(result[0]) if scalar else result


# ── Bin geometry ─────────────────────────────────────────────────────────────


def p_value(x, sigma):
    """Two-sided p-value of ``x`` with standard error ``sigma``.

    Evaluated as ``2 * Phi(-|x| / sigma)`` so that the tail does not round to 0.
    """
    return 2.0 * special.ndtr(-np.abs(x) / sigma)


def bin_index(sigma, x, alpha: np.ndarray):
    """Index of the p-value bin each ``x`` falls in (``alpha`` pre-validated)."""
    p = p_value(x, sigma)
    idx = np.searchsorted(alpha, p, side="right") - 1
    return np.clip(idx, 0, alpha.size - 2)


def critical_values(alpha) -> np.ndarray:
    """Standardized cutoffs ``z[j] = Phi^-1(1 - alpha[j] / 2)``; ``z[0] = inf``."""
    return stats.norm.isf(np.asarray(alpha, dtype=float) / 2)


def bin_bounds(sigma, alpha) -> tuple[np.ndarray, np.ndarray]:
    """Effect-size intervals of every bin.

    Returns:
        (lower, upper), each of shape ``np.shape(sigma) + (k - 1, 2)``. The last
        axis holds the negative piece ``[-sigma z[j], -sigma z[j+1]]`` and the
        positive piece ``[sigma z[j+1], sigma z[j]]``.
    """
    z = critical_values(alpha)
    s = np.asarray(sigma, dtype=float)[..., None]
    outer = s * z[:-1]
    inner = s * z[1:]
    lower = np.stack([-outer, inner], axis=-1)
    upper = np.stack([-inner, outer], axis=-1)
    return lower, upper


def lookup_weight(sigma, x, alpha: np.ndarray, eta: np.ndarray):
    return eta[bin_index(sigma, x, alpha)]


def weight(sigma, x, alpha, eta):
    """Selection weight ``eta[j]`` of the bin that ``x`` falls in.

    Args:
        sigma: Sampling standard deviation(s), strictly positive.
        x: Observed value(s).
        alpha: Significance cutoffs.
        eta: One weight per bin.

    Examples:
        >>> weight(1, 0, [0, 0.025, 0.05, 1], [3, 2, 1])
        1.0
        >>> weight(1, 3, [0, 0.025, 0.05, 1], [3, 2, 1])
        3.0
    """
    alpha = check_alpha(alpha)
    eta = check_eta(eta, alpha)
    check_positive("sigma", sigma)
    params, scalar = broadcast_params(sigma=sigma, x=x)
    return unwrap(lookup_weight(params["sigma"], params["x"], alpha, eta), scalar)


# ── Closed-form normal masses ────────────────────────────────────────────────


def log_std_normal_mass(a, b):
    """``log(Phi(b) - Phi(a))`` for ``a <= b``, stable in both tails.

    Intervals above zero are evaluated through the survival function, so the
    difference never cancels between two numbers close to 1.
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        upper_tail = special.log_ndtr(-a) + np.log1p(
            -np.exp(special.log_ndtr(-b) - special.log_ndtr(-a))
        )
        lower_tail = special.log_ndtr(b) + np.log1p(
            -np.exp(special.log_ndtr(a) - special.log_ndtr(b))
        )
    return np.where(a > 0, upper_tail, lower_tail)


def bin_log_probabilities(sigma, theta0, tau, alpha) -> np.ndarray:
    """Log mass ``log P_j`` of each bin under ``Normal(theta0, tau)``.

    Shape is ``np.broadcast(sigma, theta0, tau).shape + (k - 1,)``.
    """
    lower, upper = bin_bounds(sigma, alpha)
    m = np.asarray(theta0, dtype=float)[..., None, None]
    t = np.asarray(tau, dtype=float)[..., None, None]
    pieces = log_std_normal_mass((lower - m) / t, (upper - m) / t)
    return np.logaddexp(pieces[..., 0], pieces[..., 1])


# ── Quadrature ───────────────────────────────────────────────────────────────


def std_normal_pdf(u: float) -> float:
    return math.exp(-0.5 * u * u - _LOG_SQRT_2PI)


def quad(
    func: Callable[[float], float],
    lower: float,
    upper: float,
    points: list[float] | None = None,
) -> float:
    """Adaptive quadrature that refuses to return a non-converged value.

    ``points`` (finite limits only) are break points QUADPACK must sample.
    """
    result = integrate.quad(
        func,
        lower,
        upper,
        epsabs=QUAD_EPSABS,
        epsrel=QUAD_EPSREL,
        limit=QUAD_LIMIT,
        points=points,
        full_output=1,
    )
    if len(result) > 3:
        msg = f"quadrature on [{lower}, {upper}] did not converge: {result[3]}"
        raise NumericalInstability(msg)
    return result[0]


def integrate_weighted(
    integrand: Callable[[float], float],
    sigma: float,
    theta0: float,
    tau: float,
    alpha: np.ndarray,
    eta: np.ndarray,
) -> float:
    """Integrate ``weight * integrand`` over the real line, bin by bin.

    ``integrand`` is a function of the standardized variable
    ``u = (theta - theta0) / tau``. The weight is constant on each piece, so
    every quad call sees a smooth integrand.

    Pieces are clipped to ``|u| <= QUAD_U_MAX``. When ``tau`` is small next
    to ``sigma`` a piece can span thousands of ``tau`` units, and QUADPACK
    would otherwise never evaluate the unit-width peak at ``u = 0``.
    """
    lower, upper = bin_bounds(sigma, alpha)
    a = np.clip((lower - theta0) / tau, -QUAD_U_MAX, QUAD_U_MAX)
    b = np.clip((upper - theta0) / tau, -QUAD_U_MAX, QUAD_U_MAX)
    total = 0.0
    for j, eta_j in enumerate(eta):
        if eta_j == 0:
            continue
        for piece in range(2):
            lo, hi = float(a[j, piece]), float(b[j, piece])
            if not hi > lo:
                continue
            points = [0.0] if lo < 0.0 < hi else None
            total += eta_j * quad(integrand, lo, hi, points)
    return total


def _normalizer(
    sigma: float, theta0: float, tau: float, alpha: np.ndarray, eta: np.ndarray
) -> float:
    z = integrate_weighted(std_normal_pdf, sigma, theta0, tau, alpha, eta)
    if not z > 0:
        msg = (
            f"normalizing constant underflowed to {z!r} "
            f"(sigma={sigma}, theta0={theta0}, tau={tau})"
        )
        raise NumericalInstability(msg)
    return z


def normalizers(sigma: np.ndarray, theta0: np.ndarray, tau: np.ndarray, alpha, eta) -> np.ndarray:
    """Element-wise normalizers for pre-broadcast arrays, one quad per distinct tuple."""
    cache: dict[tuple[float, float, float], float] = {}
    out = np.empty(sigma.size)
    for i, key in enumerate(zip(sigma.tolist(), theta0.tolist(), tau.tolist(), strict=True)):
        if key not in cache:
            cache[key] = _normalizer(*key, alpha, eta)
        out[i] = cache[key]
    return out


def normalizer(sigma, theta0, tau, alpha, eta):
    """Normalizing constant of the selected normal.

    ``Z = integral of weight(sigma, t, alpha, eta) * Normal(t; theta0, tau) dt``
    evaluated by adaptive quadrature to about 1e-8.

    Raises:
        DomainError: If ``tau <= 0`` or every ``eta`` is zero.
        NumericalInstability: If quadrature does not converge or ``Z``
            underflows.
    """
    alpha = check_alpha(alpha)
    eta = check_eta(eta, alpha)
    if np.any(np.asarray(tau, dtype=float) <= 0):
        msg = f"tau must be strictly positive for a normalizable density, got {tau!r}"
        raise DomainError(msg)
    if not np.any(eta > 0):
        msg = "every eta is zero: the selected density has no mass"
        raise DomainError(msg)
    check_positive("sigma", sigma)
    check_positive("tau", tau)

    params, scalar = broadcast_params(sigma=sigma, theta0=theta0, tau=tau)
    out = normalizers(params["sigma"], params["theta0"], params["tau"], alpha, eta)
    return unwrap(out, scalar)
