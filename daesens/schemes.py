"""
Input/output schemes of the DAE callbacks and of the integrator.

The forward DAE callback is a casadi Function::

    (t, x, z, p) -> (ode, alg, quad)

The backward DAE callback is::

    (t, x, z, p, rx, rz, rp) -> (rode, ralg, rquad)

The integrator itself maps::

    (x0, p, z0, rx0, rp, rz0) -> (xf, qf, zf, rxf, rqf, rzf)

Use dae_function / rdae_function to build callbacks with missing slots
filled in by empty 0x1 symbols.
"""

from enum import IntEnum

import casadi as ca
from beartype.typing import Optional, Union

__all__ = [
    "DAEInput",
    "DAEOutput",
    "RDAEInput",
    "RDAEOutput",
    "IntegratorInput",
    "IntegratorOutput",
    "DAE_IN_NAMES",
    "DAE_OUT_NAMES",
    "RDAE_IN_NAMES",
    "RDAE_OUT_NAMES",
    "INTEGRATOR_IN_NAMES",
    "INTEGRATOR_OUT_NAMES",
    "dae_function",
    "rdae_function",
]

Sym = Union[ca.SX, ca.MX]


class DAEInput(IntEnum):
    T = 0
    X = 1
    Z = 2
    P = 3


class DAEOutput(IntEnum):
    ODE = 0
    ALG = 1
    QUAD = 2


class RDAEInput(IntEnum):
    T = 0
    X = 1
    Z = 2
    P = 3
    RX = 4
    RZ = 5
    RP = 6


class RDAEOutput(IntEnum):
    ODE = 0
    ALG = 1
    QUAD = 2


class IntegratorInput(IntEnum):
    X0 = 0
    P = 1
    Z0 = 2
    RX0 = 3
    RP = 4
    RZ0 = 5


class IntegratorOutput(IntEnum):
    XF = 0
    QF = 1
    ZF = 2
    RXF = 3
    RQF = 4
    RZF = 5


DAE_IN_NAMES = ["t", "x", "z", "p"]
DAE_OUT_NAMES = ["ode", "alg", "quad"]
RDAE_IN_NAMES = ["t", "x", "z", "p", "rx", "rz", "rp"]
RDAE_OUT_NAMES = ["rode", "ralg", "rquad"]
INTEGRATOR_IN_NAMES = ["x0", "p", "z0", "rx0", "rp", "rz0"]
INTEGRATOR_OUT_NAMES = ["xf", "qf", "zf", "rxf", "rqf", "rzf"]


def _sym_type(*exprs) -> type:
    for e in exprs:
        if isinstance(e, ca.MX):
            return ca.MX
    return ca.SX


def _or_empty(expr: Optional[Sym], sym_type: type, name: str) -> Sym:
    if expr is None:
        return sym_type.sym(name, 0, 1)
    return expr


def dae_function(
    name: str,
    x: Sym,
    ode: Sym,
    t: Optional[Sym] = None,
    z: Optional[Sym] = None,
    p: Optional[Sym] = None,
    alg: Optional[Sym] = None,
    quad: Optional[Sym] = None,
) -> ca.Function:
    """
    Build a forward DAE callback with the (t, x, z, p) -> (ode, alg, quad) scheme.

    Parameters
    ----------
    name : str
        Name of the resulting casadi Function
    x, ode : SX | MX
        Differential state and its right-hand side
    t, z, p : SX | MX, optional
        Time (scalar), algebraic variable and parameter symbols
    alg, quad : SX | MX, optional
        Algebraic residual and quadrature rate

    Returns
    -------
    ca.Function
    """
    sym = _sym_type(x, ode, t, z, p, alg, quad)
    t = sym.sym("t") if t is None else t
    z = _or_empty(z, sym, "z")
    p = _or_empty(p, sym, "p")
    alg = sym(0, 1) if alg is None else alg
    quad = sym(0, 1) if quad is None else quad
    return ca.Function(name, [t, x, z, p], [ode, alg, quad], DAE_IN_NAMES, DAE_OUT_NAMES)


def rdae_function(
    name: str,
    rx: Sym,
    rode: Sym,
    t: Optional[Sym] = None,
    x: Optional[Sym] = None,
    z: Optional[Sym] = None,
    p: Optional[Sym] = None,
    rz: Optional[Sym] = None,
    rp: Optional[Sym] = None,
    ralg: Optional[Sym] = None,
    rquad: Optional[Sym] = None,
) -> ca.Function:
    """Build a backward DAE callback with the RDAE scheme.

    Forward symbols (x, z, p) must match the forward callback's sizes.
    """
    sym = _sym_type(rx, rode, t, x, z, p, rz, rp, ralg, rquad)
    t = sym.sym("t") if t is None else t
    x = _or_empty(x, sym, "x")
    z = _or_empty(z, sym, "z")
    p = _or_empty(p, sym, "p")
    rz = _or_empty(rz, sym, "rz")
    rp = _or_empty(rp, sym, "rp")
    ralg = sym(0, 1) if ralg is None else ralg
    rquad = sym(0, 1) if rquad is None else rquad
    return ca.Function(
        name, [t, x, z, p, rx, rz, rp], [rode, ralg, rquad], RDAE_IN_NAMES, RDAE_OUT_NAMES
    )
