"""publipha - Bayesian meta-analysis correcting for publication bias and p-hacking."""

__version__ = "2026.10.19"

from publipha.errors import DomainError as DomainError
from publipha.errors import InvalidArgument as InvalidArgument
from publipha.errors import NumericalInstability as NumericalInstability
from publipha.errors import SamplingStalled as SamplingStalled
from publipha.ma import MAFit as MAFit
from publipha.ma import allma as allma
from publipha.ma import cma as cma
from publipha.ma import ma as ma
from publipha.ma import phma as phma
from publipha.ma import psma as psma
from publipha.model_spec import Bias as Bias
from publipha.model_spec import PriorSpec as PriorSpec
from publipha.phnorm import dphnorm as dphnorm
from publipha.phnorm import ephnorm as ephnorm
from publipha.phnorm import rphnorm as rphnorm
from publipha.snorm import dsnorm as dsnorm
from publipha.snorm import esnorm as esnorm
from publipha.snorm import rsnorm as rsnorm
from publipha.weights import normalizer as normalizer
from publipha.weights import weight as weight
