"""
Augmented DAE construction.

Stacks the nondifferentiated problem, ``nfwd`` forward sensitivity
directions and ``nadj`` adjoint sensitivity directions into one forward DAE
and one backward DAE, so that a single integrator pass computes all of them.
Block layout follows :func:`daesens.offsets.aug_offset`.
"""

import logging

import casadi as ca
from beartype.typing import List, NamedTuple, Optional, Tuple

from .dimensions import Dimensions
from .errors import InternalConsistencyError
from .offsets import AugOffset, aug_offset
from .schemes import (
    DAE_IN_NAMES,
    DAE_OUT_NAMES,
    RDAE_IN_NAMES,
    RDAE_OUT_NAMES,
    DAEInput,
    DAEOutput,
    RDAEInput,
    RDAEOutput,
)
from .symbolic import SplitCursor, derivative, is_sx_function, vertsplit_offsets

logger = logging.getLogger(__name__)


class AugmentedPair(NamedTuple):
    """Augmented forward DAE and augmented backward DAE (``None`` if empty)."""

    forward: ca.Function
    backward: Optional[ca.Function]


def _chunks(res: List, size: int, count: int, what: str) -> List[List]:
    if len(res) != size * count:
        raise InternalConsistencyError(
            f"{what}: expected {size * count} results ({count} x {size}), got {len(res)}"
        )
    return [res[k * size : (k + 1) * size] for k in range(count)]


def _stack(blocks: List[ca.MX]) -> ca.MX:
    if not blocks:
        return ca.MX(0, 1)
    return ca.densify(ca.vertcat(*blocks))


def build_augmented(
    f: ca.Function,
    g: Optional[ca.Function],
    dims: Dimensions,
    nfwd: int,
    nadj: int,
    expand: bool = True,
    name: str = "integrator",
) -> Tuple[AugmentedPair, AugOffset]:
    """
    Build the augmented forward and backward DAE.

    Parameters
    ----------
    f : ca.Function
        Forward DAE (t, x, z, p) -> (ode, alg, quad)
    g : ca.Function or None
        Backward DAE (t, x, z, p, rx, rz, rp) -> (rode, ralg, rquad)
    dims : Dimensions
        Resolved dimensions of (f, g)
    nfwd, nadj : int
        Number of forward and adjoint sensitivity directions
    expand : bool
        Expand the augmented functions to scalar graphs when f (and g) are
        scalar graphs themselves
    name : str
        Prefix of the generated function names

    Returns
    -------
    (AugmentedPair, AugOffset)

    Raises
    ------
    InternalConsistencyError
        If the block bookkeeping does not add up
    """
    logger.debug("build_augmented: nfwd=%d, nadj=%d", nfwd, nadj)

    offset = aug_offset(dims, nfwd, nadj)

    # Augmented problem symbols
    aug_t = ca.MX.sym("aug_t", f.sparsity_in(DAEInput.T))
    aug_x = ca.MX.sym("aug_x", offset.x[-1])
    aug_z = ca.MX.sym("aug_z", offset.z[-1])
    aug_p = ca.MX.sym("aug_p", offset.p[-1])
    aug_rx = ca.MX.sym("aug_rx", offset.rx[-1])
    aug_rz = ca.MX.sym("aug_rz", offset.rz[-1])
    aug_rp = ca.MX.sym("aug_rp", offset.rp[-1])

    # Split up the augmented vectors
    x_cur = SplitCursor("aug_x", vertsplit_offsets(aug_x, offset.x))
    z_cur = SplitCursor("aug_z", vertsplit_offsets(aug_z, offset.z))
    p_cur = SplitCursor("aug_p", vertsplit_offsets(aug_p, offset.p))
    rx_cur = SplitCursor("aug_rx", vertsplit_offsets(aug_rx, offset.rx))
    rz_cur = SplitCursor("aug_rz", vertsplit_offsets(aug_rz, offset.rz))
    rp_cur = SplitCursor("aug_rp", vertsplit_offsets(aug_rp, offset.rp))

    zero_t = ca.MX.zeros(aug_t.sparsity())

    # Right-hand sides of the DAE being constructed
    f_ode, f_alg, f_quad = [], [], []
    g_ode, g_alg, g_quad = [], [], []

    f_in_zeros = [ca.MX.zeros(f.sparsity_in(i)) for i in range(len(DAEInput))]
    f_out_zeros = [ca.MX.zeros(f.sparsity_out(i)) for i in range(len(DAEOutput))]

    # Forward derivatives of f
    d = derivative(f, nfwd, 0)
    f_arg = []
    for direction in range(-1, nfwd):
        tmp = list(f_in_zeros)
        tmp[DAEInput.T] = aug_t if direction < 0 else zero_t
        tmp[DAEInput.X] = x_cur.take_if(dims.nx > 0, tmp[DAEInput.X])
        tmp[DAEInput.Z] = z_cur.take_if(dims.nz > 0, tmp[DAEInput.Z])
        tmp[DAEInput.P] = p_cur.take_if(dims.np > 0, tmp[DAEInput.P])
        f_arg += tmp

    for tmp in _chunks(d.call(f_arg), len(DAEOutput), nfwd + 1, "forward derivatives of f"):
        if dims.nx > 0:
            f_ode.append(tmp[DAEOutput.ODE])
        if dims.nz > 0:
            f_alg.append(tmp[DAEOutput.ALG])
        if dims.nq > 0:
            f_quad.append(tmp[DAEOutput.QUAD])

    g_arg = []
    if g is not None:
        g_in_zeros = [ca.MX.zeros(g.sparsity_in(i)) for i in range(len(RDAEInput))]
        g_out_zeros = [ca.MX.zeros(g.sparsity_out(i)) for i in range(len(RDAEOutput))]

        # Forward derivatives of g, reusing the forward blocks of x, z and p
        d = derivative(g, nfwd, 0)
        x_cur.rewind()
        z_cur.rewind()
        p_cur.rewind()
        for direction in range(-1, nfwd):
            tmp = list(g_in_zeros)
            tmp[RDAEInput.T] = aug_t if direction < 0 else zero_t
            tmp[RDAEInput.X] = x_cur.take_if(dims.nx > 0, tmp[RDAEInput.X])
            tmp[RDAEInput.Z] = z_cur.take_if(dims.nz > 0, tmp[RDAEInput.Z])
            tmp[RDAEInput.P] = p_cur.take_if(dims.np > 0, tmp[RDAEInput.P])
            tmp[RDAEInput.RX] = rx_cur.take_if(dims.nrx > 0, tmp[RDAEInput.RX])
            tmp[RDAEInput.RZ] = rz_cur.take_if(dims.nrz > 0, tmp[RDAEInput.RZ])
            tmp[RDAEInput.RP] = rp_cur.take_if(dims.nrp > 0, tmp[RDAEInput.RP])
            g_arg += tmp

        for tmp in _chunks(d.call(g_arg), len(RDAEOutput), nfwd + 1, "forward derivatives of g"):
            if dims.nrx > 0:
                g_ode.append(tmp[RDAEOutput.ODE])
            if dims.nrz > 0:
                g_alg.append(tmp[RDAEOutput.ALG])
            if dims.nrq > 0:
                g_quad.append(tmp[RDAEOutput.QUAD])

    if nadj > 0:
        # Adjoint derivatives of f: seeds come in through the backward vectors,
        # sensitivities go to the backward right-hand sides
        d = derivative(f, 0, nadj)
        f_arg = f_arg[: len(DAEInput)]
        for _ in range(nadj):
            tmp = list(f_out_zeros)
            tmp[DAEOutput.ODE] = rx_cur.take_if(dims.nx > 0, tmp[DAEOutput.ODE])
            tmp[DAEOutput.ALG] = rz_cur.take_if(dims.nz > 0, tmp[DAEOutput.ALG])
            tmp[DAEOutput.QUAD] = rp_cur.take_if(dims.nq > 0, tmp[DAEOutput.QUAD])
            f_arg += tmp

        res = d.call(f_arg)[len(DAEOutput) :]

        # Where the adjoint contributions of f start, g adds onto them below
        g_ode_ind = len(g_ode)
        g_alg_ind = len(g_alg)
        g_quad_ind = len(g_quad)

        for tmp in _chunks(res, len(DAEInput), nadj, "adjoint derivatives of f"):
            if dims.nx > 0:
                g_ode.append(tmp[DAEInput.X])
            if dims.nz > 0:
                g_alg.append(tmp[DAEInput.Z])
            if dims.np > 0:
                g_quad.append(tmp[DAEInput.P])

        if g is not None:
            # Adjoint derivatives of g: seeds come in through the forward vectors
            d = derivative(g, 0, nadj)
            g_arg = g_arg[: len(RDAEInput)]
            for _ in range(nadj):
                tmp = list(g_out_zeros)
                tmp[RDAEOutput.ODE] = x_cur.take_if(dims.nrx > 0, tmp[RDAEOutput.ODE])
                tmp[RDAEOutput.ALG] = z_cur.take_if(dims.nrz > 0, tmp[RDAEOutput.ALG])
                tmp[RDAEOutput.QUAD] = p_cur.take_if(dims.nrq > 0, tmp[RDAEOutput.QUAD])
                g_arg += tmp

            res = d.call(g_arg)[len(RDAEOutput) :]
            for tmp in _chunks(res, len(RDAEInput), nadj, "adjoint derivatives of g"):
                if dims.nx > 0:
                    g_ode[g_ode_ind] = g_ode[g_ode_ind] + tmp[RDAEInput.X]
                    g_ode_ind += 1
                if dims.nz > 0:
                    g_alg[g_alg_ind] = g_alg[g_alg_ind] + tmp[RDAEInput.Z]
                    g_alg_ind += 1
                if dims.np > 0:
                    g_quad[g_quad_ind] = g_quad[g_quad_ind] + tmp[RDAEInput.P]
                    g_quad_ind += 1

            if (g_ode_ind, g_alg_ind, g_quad_ind) != (len(g_ode), len(g_alg), len(g_quad)):
                raise InternalConsistencyError("Adjoint contributions of g do not line up with those of f")

            # The backward sensitivity block must not depend on itself:
            # differentiate once more with rx, rz and rp set to zero
            for i in (RDAEInput.RX, RDAEInput.RZ, RDAEInput.RP):
                g_arg[i] = ca.MX.zeros(g_arg[i].sparsity())

            res = d.call(g_arg)[len(RDAEOutput) :]
            for tmp in _chunks(res, len(RDAEInput), nadj, "adjoint derivatives of g"):
                if dims.nrx > 0:
                    f_ode.append(tmp[RDAEInput.RX])
                if dims.nrz > 0:
                    f_alg.append(tmp[RDAEInput.RZ])
                if dims.nrp > 0:
                    f_quad.append(tmp[RDAEInput.RP])

    expand = expand and is_sx_function(f) and (g is None or is_sx_function(g))

    # Augmented forward DAE
    if g is None and nfwd == 0:
        fwd_fcn = f
    else:
        fwd_fcn = ca.Function(
            f"{name}_aug_f",
            [aug_t, aug_x, aug_z, aug_p],
            [_stack(f_ode), _stack(f_alg), _stack(f_quad)],
            DAE_IN_NAMES,
            DAE_OUT_NAMES,
        )
        if expand:
            fwd_fcn = fwd_fcn.expand()

    # Augmented backward DAE
    bwd_fcn = None
    if g_ode:
        bwd_fcn = ca.Function(
            f"{name}_aug_g",
            [aug_t, aug_x, aug_z, aug_p, aug_rx, aug_rz, aug_rp],
            [_stack(g_ode), _stack(g_alg), _stack(g_quad)],
            RDAE_IN_NAMES,
            RDAE_OUT_NAMES,
        )
        if expand:
            bwd_fcn = bwd_fcn.expand()

    for cursor in (x_cur, z_cur, p_cur, rx_cur, rz_cur, rp_cur):
        cursor.finish()

    _check_widths(fwd_fcn, bwd_fcn, offset)
    return AugmentedPair(fwd_fcn, bwd_fcn), offset


def _check_widths(fwd_fcn: ca.Function, bwd_fcn: Optional[ca.Function], offset: AugOffset) -> None:
    checks = [
        ("forward ode", fwd_fcn.nnz_out(DAEOutput.ODE), offset.x[-1]),
        ("forward alg", fwd_fcn.nnz_out(DAEOutput.ALG), offset.z[-1]),
        ("forward quad", fwd_fcn.nnz_out(DAEOutput.QUAD), offset.q[-1]),
    ]
    if bwd_fcn is not None:
        checks += [
            ("backward ode", bwd_fcn.nnz_out(RDAEOutput.ODE), offset.rx[-1]),
            ("backward alg", bwd_fcn.nnz_out(RDAEOutput.ALG), offset.rz[-1]),
            ("backward quad", bwd_fcn.nnz_out(RDAEOutput.QUAD), offset.rq[-1]),
        ]
    for what, got, expected in checks:
        if got != expected:
            raise InternalConsistencyError(f"Augmented {what} has width {got}, expected {expected}")
