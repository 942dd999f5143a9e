"""Model specification: bias regimes and prior configuration.

A fit is fully described by a ``Bias`` regime and a frozen ``PriorSpec``. The
prior spec enumerates every recognized prior parameter with its default, is
validated when it is built, and knows how to instantiate the heterogeneity
prior inside a PyMC model.
"""

from dataclasses import asdict, dataclass, fields
from enum import StrEnum

import numpy as np

from publipha.config import TAU_PRIOR_CHOICES
from publipha.errors import InvalidArgument


class Bias(StrEnum):
    """Correction regime for the meta-analysis."""

    PUBLICATION_SELECTION = "publication selection"
    P_HACKING = "p-hacking"
    NONE = "none"

    @property
    def short_name(self) -> str:
        return _SHORT_NAMES[self]


_SHORT_NAMES = {
    Bias.PUBLICATION_SELECTION: "psma",
    Bias.P_HACKING: "phma",
    Bias.NONE: "cma",
}

_ALIASES = {short: bias for bias, short in _SHORT_NAMES.items()}


def resolve_bias(bias: "str | Bias") -> Bias:
    """Parse a regime from its full name or its short alias (psma/phma/cma)."""
    if isinstance(bias, Bias):
        return bias
    key = str(bias).strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return Bias(key)
    except ValueError:
        choices = [b.value for b in Bias] + list(_ALIASES)
        msg = f"Unknown bias {bias!r}. Supported: {', '.join(choices)}"
        raise InvalidArgument(msg) from None


@dataclass(frozen=True)
class PriorSpec:
    """Prior parameters for the meta-analysis model.

    theta0 ~ Normal(theta0_mean, theta0_sd). The heterogeneity prior is chosen
    by ``tau_prior``:

        "half-normal"  Normal(tau_mean, tau_sd) truncated at 0
        "uniform"      Uniform(u_min, u_max)
        "inv_gamma"    InverseGamma(shape, scale)

    ``eta0`` is the Dirichlet concentration for the bin probabilities; ``None``
    means all ones for however many bins the cutoffs define.

    Examples:
        PriorSpec()                                        # all defaults
        PriorSpec.from_dict({"theta0_sd": 10, "eta0": (3, 2, 1)})
        PriorSpec(tau_prior="uniform", u_max=2.0)
    """

    eta0: tuple[float, ...] | None = None
    theta0_mean: float = 0.0
    theta0_sd: float = 1.0
    tau_mean: float = 0.0
    tau_sd: float = 1.0
    u_min: float = 0.0
    u_max: float = 3.0
    shape: float = 1.0
    scale: float = 1.0
    tau_prior: str = "half-normal"

    def __post_init__(self) -> None:
        if self.eta0 is not None:
            eta0 = tuple(float(v) for v in np.atleast_1d(self.eta0))
            if not eta0 or any(not v > 0 for v in eta0):
                msg = f"eta0 must be a non-empty sequence of positive values, got {eta0!r}"
                raise InvalidArgument(msg)
            object.__setattr__(self, "eta0", eta0)

        for name in ("theta0_sd", "tau_sd", "shape", "scale"):
            value = getattr(self, name)
            if not value > 0:
                raise InvalidArgument(f"{name} must be positive, got {value!r}")
        if self.u_min < 0 or not self.u_max > self.u_min:
            msg = f"need 0 <= u_min < u_max, got u_min={self.u_min!r}, u_max={self.u_max!r}"
            raise InvalidArgument(msg)
        if self.tau_prior not in TAU_PRIOR_CHOICES:
            msg = (
                f"Unknown tau prior: {self.tau_prior!r}. "
                f"Supported: {', '.join(TAU_PRIOR_CHOICES)}"
            )
            raise InvalidArgument(msg)

    @classmethod
    def allowed_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_dict(cls, prior: dict | None = None, tau_prior: str | None = None) -> "PriorSpec":
        """Build a spec from user overrides, rejecting unrecognized names.

        ``tau_prior``, when given, takes precedence over ``prior["tau_prior"]``.
        """
        prior = dict(prior or {})
        unknown = sorted(set(prior) - set(cls.allowed_names()))
        if unknown:
            msg = (
                f"prior can only contain elements with names: "
                f"{', '.join(cls.allowed_names())} (got {', '.join(unknown)})"
            )
            raise InvalidArgument(msg)
        if tau_prior is not None:
            prior["tau_prior"] = tau_prior
        return cls(**prior)

    def eta0_for(self, n_bins: int) -> np.ndarray:
        """Dirichlet concentration for ``n_bins`` bins."""
        if self.eta0 is None:
            return np.ones(n_bins)
        if len(self.eta0) != n_bins:
            msg = f"eta0 has {len(self.eta0)} entries but alpha defines {n_bins} bins"
            raise InvalidArgument(msg)
        return np.asarray(self.eta0)

    def build_tau(self):
        """Instantiate the heterogeneity prior inside an active model context.

        Must be called inside a ``with pm.Model():`` block.

        Returns:
            PyMC random variable named "tau".
        """
        import pymc as pm

        match self.tau_prior:
            case "half-normal":
                if self.tau_mean == 0:
                    return pm.HalfNormal("tau", sigma=self.tau_sd)
                return pm.TruncatedNormal("tau", mu=self.tau_mean, sigma=self.tau_sd, lower=0.0)
            case "uniform":
                return pm.Uniform("tau", lower=self.u_min, upper=self.u_max)
            case "inv_gamma":
                return pm.InverseGamma("tau", alpha=self.shape, beta=self.scale)
            case _:
                msg = f"Unknown tau prior: {self.tau_prior!r}"
                raise InvalidArgument(msg)

    def describe(self) -> str:
        """Human-readable description for logs.

        Returns:
            String like "theta0 ~ Normal(0.0, 1.0); tau ~ HalfNormal(1.0)".
        """
        match self.tau_prior:
            case "half-normal" if self.tau_mean == 0:
                tau = f"HalfNormal({self.tau_sd})"
            case "half-normal":
                tau = f"TruncatedNormal({self.tau_mean}, {self.tau_sd}, lower=0)"
            case "uniform":
                tau = f"Uniform({self.u_min}, {self.u_max})"
            case _:
                tau = f"InverseGamma({self.shape}, {self.scale})"
        parts = [f"theta0 ~ Normal({self.theta0_mean}, {self.theta0_sd})", f"tau ~ {tau}"]
        if self.eta0 is not None:
            parts.append(f"eta0 = {list(self.eta0)}")
        return "; ".join(parts)

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_PRIOR = PriorSpec()
