"""Exception taxonomy for the density, likelihood and model layers."""


class PubliphaError(Exception):
    """Base class for all publipha errors."""


class InvalidArgument(PubliphaError, ValueError):
    """Malformed input: mismatched lengths, bad scales, bad cutoffs or weights."""


class DomainError(PubliphaError, ValueError):
    """The requested density is undefined (e.g. zero normalizing mass)."""


class SamplingStalled(PubliphaError, RuntimeError):
    """The rejection sampler used up its proposal budget without accepting."""


class NumericalInstability(PubliphaError, ArithmeticError):
    """Quadrature failed to converge, or a closed form lost all precision."""
