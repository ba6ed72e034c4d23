"""
Dimension resolution and validation of the DAE callbacks.
"""

import warnings
from dataclasses import dataclass

import casadi as ca
from beartype.typing import Optional

from .errors import ConfigurationError, DimensionMismatchError
from .schemes import DAEInput, DAEOutput, RDAEInput, RDAEOutput
from .symbolic import same_sparsity, sparsity_str


@dataclass(frozen=True)
class Dimensions:
    """Sizes of all vectors of a (forward, backward) DAE pair."""

    nx: int
    nz: int
    nq: int
    np: int
    nrx: int = 0
    nrz: int = 0
    nrq: int = 0
    nrp: int = 0

    def __post_init__(self):
        for name in ("nx", "nz", "nq", "np", "nrx", "nrz", "nrq", "nrp"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"Dimension {name} must be non-negative, got {getattr(self, name)}")

    @property
    def has_backward(self) -> bool:
        return self.nrx > 0 or self.nrz > 0 or self.nrq > 0 or self.nrp > 0


def _check_arity(fcn: ca.Function, n_in: int, n_out: int, what: str) -> None:
    if fcn.n_in() != n_in:
        raise ConfigurationError(
            f"Wrong number of inputs for the {what} callback function: "
            f"expected {n_in}, got {fcn.n_in()}"
        )
    if fcn.n_out() != n_out:
        raise ConfigurationError(
            f"Wrong number of outputs for the {what} callback function: "
            f"expected {n_out}, got {fcn.n_out()}"
        )


def _check_same(a: ca.Sparsity, b: ca.Sparsity, message: str) -> None:
    if not same_sparsity(a, b):
        raise DimensionMismatchError(message, sparsity_str(a), sparsity_str(b))


def resolve_dimensions(f: ca.Function, g: Optional[ca.Function] = None) -> Dimensions:
    """
    Derive and validate the dimensions of a forward and optional backward DAE.

    Parameters
    ----------
    f : ca.Function
        Forward DAE (t, x, z, p) -> (ode, alg, quad)
    g : ca.Function, optional
        Backward DAE (t, x, z, p, rx, rz, rp) -> (rode, ralg, rquad)

    Returns
    -------
    Dimensions

    Raises
    ------
    ConfigurationError
        If a callback has the wrong number of inputs or outputs
    DimensionMismatchError
        If port patterns disagree
    """
    _check_arity(f, len(DAEInput), len(DAEOutput), "DAE")

    x_sp = f.sparsity_in(DAEInput.X)
    z_sp = f.sparsity_in(DAEInput.Z)
    p_sp = f.sparsity_in(DAEInput.P)

    if not x_sp.is_dense():
        warnings.warn("Sparse states in integrators are experimental")

    _check_same(x_sp, f.sparsity_out(DAEOutput.ODE), "Inconsistent dimensions of the DAE_ODE output.")
    _check_same(z_sp, f.sparsity_out(DAEOutput.ALG), "Inconsistent dimensions of the DAE_ALG output.")

    if g is None:
        return Dimensions(
            nx=x_sp.nnz(),
            nz=z_sp.nnz(),
            nq=f.nnz_out(DAEOutput.QUAD),
            np=p_sp.nnz(),
        )

    _check_arity(g, len(RDAEInput), len(RDAEOutput), "backwards DAE")
    _check_same(p_sp, g.sparsity_in(RDAEInput.P), "Inconsistent dimensions of the RDAE_P input.")
    _check_same(x_sp, g.sparsity_in(RDAEInput.X), "Inconsistent dimensions of the RDAE_X input.")
    _check_same(z_sp, g.sparsity_in(RDAEInput.Z), "Inconsistent dimensions of the RDAE_Z input.")
    _check_same(
        g.sparsity_in(RDAEInput.RX), g.sparsity_out(RDAEOutput.ODE), "Inconsistent dimensions of the RDAE_ODE output."
    )
    _check_same(
        g.sparsity_in(RDAEInput.RZ), g.sparsity_out(RDAEOutput.ALG), "Inconsistent dimensions of the RDAE_ALG output."
    )

    return Dimensions(
        nx=x_sp.nnz(),
        nz=z_sp.nnz(),
        nq=f.nnz_out(DAEOutput.QUAD),
        np=p_sp.nnz(),
        nrx=g.nnz_in(RDAEInput.RX),
        nrz=g.nnz_in(RDAEInput.RZ),
        nrq=g.nnz_out(RDAEOutput.QUAD),
        nrp=g.nnz_in(RDAEInput.RP),
    )
