"""
Structural (bit-vector) dependency propagation through an integrator.

Forward mode resolves, at the bit level, the implicit coupling an implicit
solver would resolve with a Newton step: the ODE/ALG dependency masks are
pushed through a structural solve with the pattern of

    [ dODE/dX + I   dODE/dZ ]
    [ dALG/dX       dALG/dZ ]

Reverse mode is a coarse over-approximation: every backward input depends on
every backward output, and every forward input depends on every output.
"""

import logging

import casadi as ca
import numpy as np
from beartype.typing import List, Optional
from scipy import sparse

from .bitvector import BVEC_WIDTH, BitVector, StructuralFunction
from .dimensions import Dimensions
from .linsol import StructuralLinearSolver
from .schemes import DAEInput, DAEOutput, IntegratorInput, IntegratorOutput, RDAEInput, RDAEOutput
from .symbolic import jac_pattern

logger = logging.getLogger(__name__)


def _coefficient_pattern(fcn: ca.Function, ode: int, alg: int, x: int, z: int, nx: int, nz: int) -> sparse.csr_matrix:
    # Diagonal captures the time-derivative term of every state
    ret = sparse.csr_matrix(jac_pattern(fcn, ode, x), dtype=np.int8) + sparse.identity(nx, dtype=np.int8, format="csr")
    ret = sparse.csr_matrix(ret).astype(bool)
    if nz == 0:
        return ret
    return sparse.bmat(
        [
            [ret, jac_pattern(fcn, ode, z)],
            [jac_pattern(fcn, alg, x), jac_pattern(fcn, alg, z)],
        ],
        format="csr",
        dtype=bool,
    )


def sp_jac_f(f: ca.Function, dims: Dimensions) -> sparse.csr_matrix:
    """Square coefficient pattern of the forward DAE, of size ``nx + nz``."""
    return _coefficient_pattern(f, DAEOutput.ODE, DAEOutput.ALG, DAEInput.X, DAEInput.Z, dims.nx, dims.nz)


def sp_jac_g(g: ca.Function, dims: Dimensions) -> sparse.csr_matrix:
    """Square coefficient pattern of the backward DAE, of size ``nrx + nrz``."""
    return _coefficient_pattern(g, RDAEOutput.ODE, RDAEOutput.ALG, RDAEInput.RX, RDAEInput.RZ, dims.nrx, dims.nrz)


def integrator_io_sizes(dims: Dimensions):
    """Sizes of the integrator inputs and outputs, in scheme order."""
    n_in = [0] * len(IntegratorInput)
    n_in[IntegratorInput.X0] = dims.nx
    n_in[IntegratorInput.P] = dims.np
    n_in[IntegratorInput.Z0] = dims.nz
    n_in[IntegratorInput.RX0] = dims.nrx
    n_in[IntegratorInput.RP] = dims.nrp
    n_in[IntegratorInput.RZ0] = dims.nrz
    n_out = [0] * len(IntegratorOutput)
    n_out[IntegratorOutput.XF] = dims.nx
    n_out[IntegratorOutput.QF] = dims.nq
    n_out[IntegratorOutput.ZF] = dims.nz
    n_out[IntegratorOutput.RXF] = dims.nrx
    n_out[IntegratorOutput.RQF] = dims.nrq
    n_out[IntegratorOutput.RZF] = dims.nrz
    return n_in, n_out


class StructuralPropagator:
    """
    Bit-vector propagation through the integrator ``(x0, p, z0, rx0, rp, rz0)
    -> (xf, qf, zf, rxf, rqf, rzf)``.

    Owns one bit buffer per integrator input and output. The buffers, the
    bit-level views of the callbacks and the two structural linear solvers
    belong to a single integrator and must not be shared.
    """

    def __init__(self, f: ca.Function, g: Optional[ca.Function], dims: Dimensions):
        self.dims = dims
        self.f = StructuralFunction(f)
        self.g = None if g is None else StructuralFunction(g)

        self.linsol_f = StructuralLinearSolver(sp_jac_f(f, dims))
        self.linsol_g = None if g is None else StructuralLinearSolver(sp_jac_g(g, dims))

        n_in, n_out = integrator_io_sizes(dims)
        self.input: List[BitVector] = [BitVector.zeros(n) for n in n_in]
        self.output: List[BitVector] = [BitVector.zeros(n) for n in n_out]

    def propagate(self, forward: bool) -> None:
        """Forward: input masks -> output masks. Reverse: output masks -> input masks."""
        logger.debug("StructuralPropagator.propagate: begin (forward=%s)", forward)
        if forward:
            self._propagate_forward()
        else:
            self._propagate_reverse()
        logger.debug("StructuralPropagator.propagate: end")

    def _propagate_forward(self) -> None:
        d = self.dims
        x0 = self.input[IntegratorInput.X0]
        p = self.input[IntegratorInput.P]
        t_zero = BitVector.zeros(self.f.f.nnz_in(DAEInput.T))

        # Propagate through the DAE, no dependency on the algebraic guess
        ode, alg, _ = self.f.forward([t_zero, x0, BitVector.zeros(d.nz), p])

        # Resolve the interdependencies between ode and alg
        sol = BitVector.concat(x0, BitVector.zeros(d.nz))
        self.linsol_f.sp_solve(sol, BitVector.concat(ode, alg))
        xf, zf = sol.split([d.nx, d.nz])
        self.output[IntegratorOutput.XF].set(xf)
        self.output[IntegratorOutput.ZF].set(zf)

        # Influence on the quadratures
        if d.nq > 0:
            _, _, quad = self.f.forward([t_zero, xf, zf, p])
            self.output[IntegratorOutput.QF].set(quad)

        if self.g is None:
            return

        rx0 = self.input[IntegratorInput.RX0]
        rp = self.input[IntegratorInput.RP]
        t_zero = BitVector.zeros(self.g.f.nnz_in(RDAEInput.T))

        rode, ralg, _ = self.g.forward([t_zero, xf, zf, p, rx0, BitVector.zeros(d.nrz), rp])

        sol = BitVector.concat(rx0, BitVector.zeros(d.nrz))
        self.linsol_g.sp_solve(sol, BitVector.concat(rode, ralg))
        rxf, rzf = sol.split([d.nrx, d.nrz])
        self.output[IntegratorOutput.RXF].set(rxf)
        self.output[IntegratorOutput.RZF].set(rzf)

        if d.nrq > 0:
            _, _, rquad = self.g.forward([t_zero, xf, zf, p, rxf, rzf, rp])
            self.output[IntegratorOutput.RQF].set(rquad)

    def _propagate_reverse(self) -> None:
        # No dependency on the initial guesses of the algebraic variables
        self.input[IntegratorInput.Z0].set_zero()
        self.input[IntegratorInput.RZ0].set_zero()

        # Whatever influences the backward outputs reaches rx0 and rp
        all_depend = 0
        for oind in (IntegratorOutput.RXF, IntegratorOutput.RQF, IntegratorOutput.RZF):
            all_depend |= self.output[oind].any()
        self.input[IntegratorInput.RX0].fill(all_depend)
        self.input[IntegratorInput.RP].fill(all_depend)

        # The forward outputs add to what reaches x0 and p
        for oind in (IntegratorOutput.XF, IntegratorOutput.QF, IntegratorOutput.ZF):
            all_depend |= self.output[oind].any()
        self.input[IntegratorInput.X0].fill(all_depend)
        self.input[IntegratorInput.P].fill(all_depend)

    def jac_sparsity(self, oind: int, iind: int) -> sparse.csr_matrix:
        """
        Structural Jacobian of integrator output ``oind`` w.r.t. input ``iind``,
        from forward sweeps seeding 64 input elements at a time.

        The bit buffers are restored afterwards.
        """
        saved_in = [b.copy() for b in self.input]
        saved_out = [b.copy() for b in self.output]
        n_in = len(self.input[iind])
        n_out = len(self.output[oind])
        rows = []
        cols = []
        try:
            for offset in range(0, n_in, BVEC_WIDTH):
                for b in self.input:
                    b.set_zero()
                self.input[iind].set(BitVector.seeded(n_in, offset))
                self._propagate_forward()
                out = self.output[oind]
                for bit in range(min(BVEC_WIDTH, n_in - offset)):
                    r = np.flatnonzero(out.to_mask(bit))
                    rows.extend(r.tolist())
                    cols.extend([offset + bit] * r.shape[0])
        finally:
            for b, s in zip(self.input, saved_in):
                b.set(s)
            for b, s in zip(self.output, saved_out):
                b.set(s)
        rows = np.asarray(rows, dtype=np.int64)
        cols = np.asarray(cols, dtype=np.int64)
        data = np.ones(rows.shape[0], dtype=bool)
        return sparse.csr_matrix((data, (rows, cols)), shape=(n_out, n_in))
