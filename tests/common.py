import cProfile
import unittest
from pathlib import Path
from pstats import Stats

import casadi as ca
import numpy as np
from beartype import beartype
from beartype.typing import Union

from daesens import dae_function, rdae_function

EPS = 1e-9


@beartype
def is_finite(e: Union[ca.SX, ca.DM]) -> bool:
    """Check if all elements in a CasADi expression are finite."""
    return bool(np.all(np.isfinite(ca.DM(e))))


@beartype
def DM_close(e1: Union[ca.DM, float], e2: Union[ca.DM, float], tol: float = EPS) -> bool:
    """Check if two numeric CasADi values are close within ``tol``."""
    diff = ca.DM(e1) - ca.DM(e2)
    close = diff.numel() == 0 or float(ca.mmax(ca.fabs(diff))) < tol
    if not close:
        print(ca.DM(e1), ca.DM(e2))
    return close


def decay_dae(with_quad: bool = True, sym=ca.SX) -> ca.Function:
    """x' = -p x, with quadrature q' = x."""
    x = sym.sym("x")
    p = sym.sym("p")
    return dae_function("decay", x, -p * x, p=p, quad=x if with_quad else None)


def coupled_dae(sym=ca.SX) -> ca.Function:
    """Two states coupled through each other, one parameter."""
    x = sym.sym("x", 2)
    p = sym.sym("p")
    return dae_function("coupled", x, ca.vertcat(x[1], -p * x[0]), p=p)


def diagonal_dae(sym=ca.SX) -> ca.Function:
    """Two decoupled states, only the second one driven by the parameter."""
    x = sym.sym("x", 2)
    p = sym.sym("p")
    return dae_function("diagonal", x, ca.vertcat(-x[0], p * x[1]), p=p, quad=x[0] ** 2)


def scalar_backward_pair(sym=ca.SX):
    """Forward x' = -x without parameters and backward rx' = x rx."""
    t = sym.sym("t")
    x = sym.sym("x")
    rx = sym.sym("rx")
    f = dae_function("fwd", x, -x, t=t)
    g = rdae_function("bwd", rx, x * rx, t=t, x=x, rquad=rx)
    return f, g


def parameter_backward_pair(sym=ca.SX):
    """Forward x' = -x and backward rx' = rp with quadrature rq' = rx."""
    x = sym.sym("x")
    rx = sym.sym("rx")
    rp = sym.sym("rp")
    f = dae_function("fwd", x, -x)
    g = rdae_function("bwd", rx, rp, x=x, rp=rp, rquad=rx)
    return f, g


def implicit_pair(sym=ca.SX):
    """
    Forward and backward DAEs that both carry algebraic variables.

    Forward: x0' = z, x1' = -p x1, 0 = z - x0, q' = z + x1.
    Backward: rx0' = x0 rx0 + rz, rx1' = rp - rx1, 0 = rz - rx1,
    rq' = rx0 + rp z.
    """
    x = sym.sym("x", 2)
    z = sym.sym("z")
    p = sym.sym("p")
    rx = sym.sym("rx", 2)
    rz = sym.sym("rz")
    rp = sym.sym("rp")
    f = dae_function("fwd", x, ca.vertcat(z, -p * x[1]), z=z, p=p, alg=z - x[0], quad=z + x[1])
    g = rdae_function(
        "bwd",
        rx,
        ca.vertcat(x[0] * rx[0] + rz, rp - rx[1]),
        x=x,
        z=z,
        p=p,
        rz=rz,
        rp=rp,
        ralg=rz - rx[1],
        rquad=rx[0] + rp * z,
    )
    return f, g


@beartype
class ProfiledTestCase(unittest.TestCase):
    """Base test case with profiling support."""

    def setUp(self):
        self.pr = cProfile.Profile()
        self.pr.enable()

    def tearDown(self) -> None:
        p = Stats(self.pr)
        p.strip_dirs()
        p.sort_stats("cumtime")
        profile_dir = Path(".profile")
        profile_dir.mkdir(exist_ok=True)
        p.dump_stats(profile_dir / self.id())
