"""
daesens - Sensitivity core for DAE integrators

Augmented forward and adjoint sensitivity problems, derivative functions and
structural dependency propagation for integrators of CasADi DAEs.
"""

from beartype.claw import beartype_package

beartype_package(__name__)

__version__ = "0.1.0"

from .augmented import AugmentedPair, build_augmented
from .derivative import DerivativeFunction, assemble_derivative
from .dimensions import Dimensions, resolve_dimensions
from .errors import ConfigurationError, DAESensError, DimensionMismatchError, InternalConsistencyError
from .integrator import Integrator
from .offsets import AugOffset, aug_offset
from .schemes import (
    DAEInput,
    DAEOutput,
    IntegratorInput,
    IntegratorOutput,
    RDAEInput,
    RDAEOutput,
    dae_function,
    rdae_function,
)

__all__ = [
    "AugOffset",
    "AugmentedPair",
    "ConfigurationError",
    "DAEInput",
    "DAEOutput",
    "DAESensError",
    "DerivativeFunction",
    "Dimensions",
    "DimensionMismatchError",
    "Integrator",
    "IntegratorInput",
    "IntegratorOutput",
    "InternalConsistencyError",
    "RDAEInput",
    "RDAEOutput",
    "__version__",
    "assemble_derivative",
    "aug_offset",
    "build_augmented",
    "dae_function",
    "rdae_function",
    "resolve_dimensions",
]
