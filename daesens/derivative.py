"""
Derivative functions of an integrator.

An integrator differentiated in ``nfwd`` forward and ``nadj`` adjoint
directions is itself an integrator of the augmented DAE, wrapped so that it
reads like a plain function::

    (inputs, nfwd x forward seeds, nadj x adjoint seeds)
        -> (outputs, nfwd x forward sensitivities, nadj x adjoint sensitivities)

Forward seeds are shaped like the integrator inputs and forward
sensitivities like its outputs. Adjoint seeds are shaped like the outputs and
adjoint sensitivities like the inputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import casadi as ca
from beartype.typing import Any, List

from .offsets import AugOffset
from .schemes import INTEGRATOR_IN_NAMES, INTEGRATOR_OUT_NAMES, IntegratorInput, IntegratorOutput
from .symbolic import SplitCursor, vertsplit_offsets

logger = logging.getLogger(__name__)


@dataclass
class DerivativeFunction:
    """
    A casadi Function together with the augmented integrator it calls.

    The augmented integrator is a Python callback referenced from inside the
    casadi graph, so it has to live at least as long as ``function``.
    """

    function: ca.Function
    integrator: Any
    offset: AugOffset
    nfwd: int
    nadj: int
    input_names: List[str] = field(default_factory=list)
    output_names: List[str] = field(default_factory=list)

    def __call__(self, *args, **kwargs):
        return self.function(*args, **kwargs)

    def call(self, args):
        return self.function.call(args)

    def n_in(self) -> int:
        return self.function.n_in()

    def n_out(self) -> int:
        return self.function.n_out()


def fwd_name(direction: int, name: str) -> str:
    return f"{name}_{direction}"


def adj_name(direction: int, name: str) -> str:
    return f"{name}_adj{direction}"


def assemble_derivative(integrator, nfwd: int, nadj: int) -> DerivativeFunction:
    """
    Build the derivative function of ``integrator`` in ``nfwd`` forward and
    ``nadj`` adjoint directions.

    Parameters
    ----------
    integrator : Integrator
        An initialized integrator
    nfwd, nadj : int
        Number of forward and adjoint directions

    Returns
    -------
    DerivativeFunction
        No numeric evaluation takes place here
    """
    logger.debug("assemble_derivative: begin (nfwd=%d, nadj=%d)", nfwd, nadj)
    d = integrator.dims

    # Integrator for the augmented DAE
    (f_aug, g_aug), offset = integrator.get_augmented(nfwd, nadj)
    aug = integrator.create(f_aug, g_aug)
    integrator.set_derivative_options(aug, offset)
    if integrator.has_set_option("augmented_options"):
        aug.set_options(integrator.get_option("augmented_options"))
    aug.init()

    ret_in = []
    in_names = []
    x0_aug, p_aug, z0_aug, rx0_aug, rp_aug, rz0_aug = [], [], [], [], [], []

    # Nondifferentiated inputs and forward seeds
    for direction in range(-1, nfwd):
        names = [n if direction < 0 else fwd_name(direction, n) for n in INTEGRATOR_IN_NAMES]
        dd = [ca.MX.sym(names[i], integrator.input(i).sparsity()) for i in IntegratorInput]
        x0_aug.append(dd[IntegratorInput.X0])
        p_aug.append(dd[IntegratorInput.P])
        z0_aug.append(dd[IntegratorInput.Z0])
        rx0_aug.append(dd[IntegratorInput.RX0])
        rp_aug.append(dd[IntegratorInput.RP])
        rz0_aug.append(dd[IntegratorInput.RZ0])
        ret_in += dd
        in_names += names

    # Adjoint seeds, forward and backward swap roles
    for direction in range(nadj):
        names = [adj_name(direction, n) for n in INTEGRATOR_OUT_NAMES]
        dd = [ca.MX.sym(names[i], integrator.output(i).sparsity()) for i in IntegratorOutput]
        rx0_aug.append(dd[IntegratorOutput.XF])
        rp_aug.append(dd[IntegratorOutput.QF])
        rz0_aug.append(dd[IntegratorOutput.ZF])
        x0_aug.append(dd[IntegratorOutput.RXF])
        p_aug.append(dd[IntegratorOutput.RQF])
        z0_aug.append(dd[IntegratorOutput.RZF])
        ret_in += dd
        in_names += names

    integrator_in = [None] * len(IntegratorInput)
    integrator_in[IntegratorInput.X0] = ca.vertcat(*x0_aug)
    integrator_in[IntegratorInput.P] = ca.vertcat(*p_aug)
    integrator_in[IntegratorInput.Z0] = ca.vertcat(*z0_aug)
    integrator_in[IntegratorInput.RX0] = ca.vertcat(*rx0_aug)
    integrator_in[IntegratorInput.RP] = ca.vertcat(*rp_aug)
    integrator_in[IntegratorInput.RZ0] = ca.vertcat(*rz0_aug)
    integrator_out = aug.call(integrator_in)

    # Augmented results
    xf_cur = SplitCursor("xf", vertsplit_offsets(integrator_out[IntegratorOutput.XF], offset.x))
    qf_cur = SplitCursor("qf", vertsplit_offsets(integrator_out[IntegratorOutput.QF], offset.q))
    zf_cur = SplitCursor("zf", vertsplit_offsets(integrator_out[IntegratorOutput.ZF], offset.z))
    rxf_cur = SplitCursor("rxf", vertsplit_offsets(integrator_out[IntegratorOutput.RXF], offset.rx))
    rqf_cur = SplitCursor("rqf", vertsplit_offsets(integrator_out[IntegratorOutput.RQF], offset.rq))
    rzf_cur = SplitCursor("rzf", vertsplit_offsets(integrator_out[IntegratorOutput.RZF], offset.rz))

    ret_out = []
    out_names = []

    # Nondifferentiated results and forward sensitivities
    for direction in range(-1, nfwd):
        dd = [ca.MX.zeros(integrator.output(i).sparsity()) for i in IntegratorOutput]
        dd[IntegratorOutput.XF] = xf_cur.take_if(d.nx > 0, dd[IntegratorOutput.XF])
        dd[IntegratorOutput.QF] = qf_cur.take_if(d.nq > 0, dd[IntegratorOutput.QF])
        dd[IntegratorOutput.ZF] = zf_cur.take_if(d.nz > 0, dd[IntegratorOutput.ZF])
        dd[IntegratorOutput.RXF] = rxf_cur.take_if(d.nrx > 0, dd[IntegratorOutput.RXF])
        dd[IntegratorOutput.RQF] = rqf_cur.take_if(d.nrq > 0, dd[IntegratorOutput.RQF])
        dd[IntegratorOutput.RZF] = rzf_cur.take_if(d.nrz > 0, dd[IntegratorOutput.RZF])
        ret_out += dd
        out_names += [n if direction < 0 else fwd_name(direction, n) for n in INTEGRATOR_OUT_NAMES]

    # Adjoint sensitivities, shaped like the inputs
    for direction in range(nadj):
        dd = [ca.MX.zeros(integrator.input(i).sparsity()) for i in IntegratorInput]
        dd[IntegratorInput.X0] = rxf_cur.take_if(d.nx > 0, dd[IntegratorInput.X0])
        dd[IntegratorInput.P] = rqf_cur.take_if(d.np > 0, dd[IntegratorInput.P])
        dd[IntegratorInput.Z0] = rzf_cur.take_if(d.nz > 0, dd[IntegratorInput.Z0])
        dd[IntegratorInput.RX0] = xf_cur.take_if(d.nrx > 0, dd[IntegratorInput.RX0])
        dd[IntegratorInput.RP] = qf_cur.take_if(d.nrp > 0, dd[IntegratorInput.RP])
        dd[IntegratorInput.RZ0] = zf_cur.take_if(d.nrz > 0, dd[IntegratorInput.RZ0])
        ret_out += dd
        out_names += [adj_name(direction, n) for n in INTEGRATOR_IN_NAMES]

    for cursor in (xf_cur, qf_cur, zf_cur, rxf_cur, rqf_cur, rzf_cur):
        cursor.finish()

    name = f"{integrator.get_option('name')}_der_{nfwd}_{nadj}"
    fcn = ca.Function(name, ret_in, ret_out, in_names, out_names)
    logger.debug("assemble_derivative: end")
    return DerivativeFunction(fcn, aug, offset, nfwd, nadj, in_names, out_names)
