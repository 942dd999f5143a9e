"""Configuration constants for publipha."""

try:
    from importlib.metadata import version as _pkg_version

    _VERSION = _pkg_version("publipha")
except Exception:
    _VERSION = "dev"

# Two-sided significance cutoffs: bins [0, .025), [.025, .05), [.05, 1]
DEFAULT_ALPHA = (0.0, 0.025, 0.05, 1.0)

QUAD_EPSABS = 1e-8
QUAD_EPSREL = 1e-8
QUAD_LIMIT = 200  # subintervals per quad call
QUAD_U_MAX = 40.0  # standard normal mass beyond |u| > 40 is below 1e-300

SIMPLEX_TOL = 1e-8  # allowed |sum(eta) - 1| for mixture weights

MAX_PROPOSALS = 1_000_000  # rejection sampler budget per draw

# Sampler defaults (nutpie)
RANDOM_SEED = 42
N_SAMPLES = 2000
N_TUNE = 1000
N_CHAINS = 4

TAU_PRIOR_CHOICES = ("half-normal", "uniform", "inv_gamma")
