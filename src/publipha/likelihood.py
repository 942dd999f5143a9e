"""Per-study log-likelihoods for the meta-analysis model (pytensor graphs).

Each kernel scores observed effects ``y`` given latent true effects ``theta``
and known standard errors ``sigma``. The selection distortions are the same as
in :mod:`publipha.snorm` and :mod:`publipha.phnorm`, but the integration is
over the sampling distribution ``Normal(theta, sigma)`` of ``y``, so every bin
mass is a closed-form difference of normal log CDFs. No quadrature, no
sampling: the kernels run inside NUTS once per gradient evaluation.

The only comparisons on ``y`` are against the fixed bin cutoffs, which depend
on data alone; gradients in ``theta``, ``eta`` and ``tau`` are smooth.
"""

import numpy as np
import pytensor.tensor as pt
from pymc.math import logdiffexp, logsumexp

from publipha.model_spec import Bias
from publipha.weights import check_alpha, critical_values

_LOG_SQRT_2PI = 0.5 * np.log(2 * np.pi)
_SQRT2 = np.sqrt(2.0)


def normal_logpdf(y, theta, sigma):
    """Log density of ``Normal(theta, sigma)`` at ``y``."""
    z = (y - theta) / sigma
    return -0.5 * pt.sqr(z) - pt.log(sigma) - _LOG_SQRT_2PI


def _std_lcdf(z):
    """log Phi(z): erfcx form below -1, log1p form above.

    Each branch only ever sees arguments from its own side of -1, so the
    unused branch cannot overflow and poison the gradient with NaN.
    """
    low = pt.minimum(z, -1.0)
    high = pt.maximum(z, -1.0)
    lower_tail = pt.log(pt.erfcx(-low / _SQRT2) / 2.0) - pt.sqr(low) / 2.0
    upper_tail = pt.log1p(-pt.erfc(high / _SQRT2) / 2.0)
    return pt.switch(pt.lt(z, -1.0), lower_tail, upper_tail)


def _log_interval_mass(theta, sigma, lower, upper):
    """log P(lower < Y < upper) for Y ~ Normal(theta, sigma), finite bounds.

    Intervals centred above the mean are reflected into the lower tail so the
    log CDFs never both sit next to zero.
    """
    a = (lower - theta) / sigma
    b = (upper - theta) / sigma
    flip = pt.gt(a + b, 0)
    lo = pt.switch(flip, -b, a)
    hi = pt.switch(flip, -a, b)
    return logdiffexp(_std_lcdf(hi), _std_lcdf(lo))


def bin_log_mass(theta, sigma, alpha):
    """Log normal mass of every significance bin under ``Normal(theta, sigma)``.

    Returns a tensor with a trailing axis of length ``k - 1``.
    """
    z = critical_values(check_alpha(alpha))
    columns = []
    for j in range(z.size - 1):
        inner = sigma * z[j + 1]
        if np.isinf(z[j]):
            positive = _std_lcdf((theta - inner) / sigma)
            negative = _std_lcdf((-inner - theta) / sigma)
        else:
            outer = sigma * z[j]
            positive = _log_interval_mass(theta, sigma, inner, outer)
            negative = _log_interval_mass(theta, sigma, -outer, -inner)
        pieces = pt.stack([positive, negative], axis=-1)
        columns.append(logsumexp(pieces, axis=-1, keepdims=False))
    return pt.stack(columns, axis=-1)


def bin_membership(y, sigma, alpha):
    """One-hot bin membership of each ``y``, trailing axis of length ``k - 1``.

    Uses the same two-sided p-value and half-open bins as
    :func:`publipha.weights.bin_index`.
    """
    alpha = check_alpha(alpha)
    p = pt.erfc(pt.abs(y) / (sigma * np.sqrt(2.0)))
    idx = pt.zeros_like(p, dtype="int64")
    for cutoff in alpha[1:-1]:
        idx = idx + pt.ge(p, cutoff)
    return pt.eq(pt.shape_padright(idx), np.arange(alpha.size - 1))


def psma_logp(y, theta, sigma, alpha, eta):
    """Publication selection log-likelihood.

    log eta[bin(y)] + log phi(y; theta, sigma) - log sum_j eta[j] P_j(theta, sigma)
    """
    y = pt.as_tensor_variable(y)
    eta = pt.as_tensor_variable(eta)
    member = bin_membership(y, sigma, alpha)
    log_weight = pt.log(pt.sum(member * eta, axis=-1))
    log_mass = pt.log(eta) + bin_log_mass(theta, sigma, alpha)
    log_norm = logsumexp(log_mass, axis=-1, keepdims=False)
    return log_weight + normal_logpdf(y, theta, sigma) - log_norm


def phma_logp(y, theta, sigma, alpha, eta):
    """P-hacking log-likelihood.

    Log-sum-exp over bins of ``log eta[j] + log phi(y) - log P_j``, each term
    restricted to the bin holding ``y``.
    """
    y = pt.as_tensor_variable(y)
    eta = pt.as_tensor_variable(eta)
    member = bin_membership(y, sigma, alpha)
    log_comp = (
        pt.log(eta)
        + pt.shape_padright(normal_logpdf(y, theta, sigma))
        - bin_log_mass(theta, sigma, alpha)
    )
    return logsumexp(pt.switch(member, log_comp, -np.inf), axis=-1, keepdims=False)


def cma_logp(y, theta, sigma, alpha=None, eta=None):
    """Uncorrected log-likelihood; ``alpha`` and ``eta`` are ignored."""
    return normal_logpdf(pt.as_tensor_variable(y), theta, sigma)


KERNELS = {
    Bias.PUBLICATION_SELECTION: psma_logp,
    Bias.P_HACKING: phma_logp,
    Bias.NONE: cma_logp,
}
