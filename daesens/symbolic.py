"""
Expression-graph helpers on top of CasADi.

This module provides:
- derivative: n-th order forward/adjoint derivative of a Function, with the
  directions laid out one after another (not horizontally concatenated)
- vertsplit_offsets: vertical split that tolerates an empty offset list
- SplitCursor: cursor over a list of split blocks with exhaustion checks
- sparsity helpers: pattern comparison and conversion to scipy CSR
"""

from __future__ import annotations

import casadi as ca
import numpy as np
from beartype.typing import List, Sequence
from scipy import sparse

from .errors import ConfigurationError, InternalConsistencyError


def is_sx_function(f: ca.Function) -> bool:
    """True if ``f`` is a fully expanded (scalar graph) function."""
    return f.is_a("SXFunction")


def derivative(f: ca.Function, nfwd: int, nadj: int) -> ca.Function:
    """
    Build a function evaluating ``f`` together with directional derivatives.

    Inputs of the returned function, in order:
      - the ``n_in`` nondifferentiated inputs
      - ``nfwd`` groups of ``n_in`` forward seeds
      - ``nadj`` groups of ``n_out`` adjoint seeds

    Outputs, in order:
      - the ``n_out`` nondifferentiated outputs
      - ``nfwd`` groups of ``n_out`` forward sensitivities
      - ``nadj`` groups of ``n_in`` adjoint sensitivities

    Parameters
    ----------
    f : ca.Function
        Function to differentiate
    nfwd : int
        Number of forward directions
    nadj : int
        Number of adjoint directions

    Returns
    -------
    ca.Function
        Function with ``(1 + nfwd) * n_in + nadj * n_out`` inputs and
        ``(1 + nfwd) * n_out + nadj * n_in`` outputs
    """
    if nfwd < 0 or nadj < 0:
        raise ConfigurationError(f"Direction counts must be non-negative, got nfwd={nfwd}, nadj={nadj}")

    # Keep scalar graphs scalar so that the result can still be expanded
    sym = ca.SX if is_sx_function(f) else ca.MX
    n_in = f.n_in()
    n_out = f.n_out()

    arg = [sym.sym(f.name_in(i), f.sparsity_in(i)) for i in range(n_in)]
    res = f.call(arg)
    der_in = list(arg)
    der_out = list(res)

    if nfwd > 0:
        fwd = f.forward(1)
        for d in range(nfwd):
            seed = [sym.sym(f"fwd{d}_{f.name_in(i)}", f.sparsity_in(i)) for i in range(n_in)]
            der_in += seed
            der_out += fwd.call(arg + res + seed)

    if nadj > 0:
        adj = f.reverse(1)
        for d in range(nadj):
            seed = [sym.sym(f"adj{d}_{f.name_out(i)}", f.sparsity_out(i)) for i in range(n_out)]
            der_in += seed
            der_out += adj.call(arg + res + seed)

    return ca.Function(f"{f.name()}_der_{nfwd}_{nadj}", der_in, der_out)


def vertsplit_offsets(x, offsets: Sequence[int]) -> list:
    """Split ``x`` vertically at cumulative ``offsets`` (first 0, last ``x.size1()``)."""
    if len(offsets) <= 1:
        return []
    if offsets[-1] != x.size1():
        raise InternalConsistencyError(
            f"Split offsets end at {offsets[-1]} but the expression has {x.size1()} rows"
        )
    return ca.vertsplit(x, [int(o) for o in offsets])


class SplitCursor:
    """Cursor over the blocks of a split vector.

    Every block must be taken exactly once per pass; taking past the end or
    finishing with blocks left over is an internal consistency failure.
    """

    def __init__(self, name: str, blocks: List):
        self.name = name
        self._blocks = list(blocks)
        self._pos = 0

    def __len__(self) -> int:
        return len(self._blocks)

    @property
    def remaining(self) -> int:
        return len(self._blocks) - self._pos

    def take(self):
        if self._pos >= len(self._blocks):
            raise InternalConsistencyError(
                f"Cursor '{self.name}' exhausted after {len(self._blocks)} blocks"
            )
        block = self._blocks[self._pos]
        self._pos += 1
        return block

    def take_if(self, condition: bool, default):
        """Take the next block if ``condition`` holds, else return ``default``."""
        return self.take() if condition else default

    def rewind(self) -> None:
        self._pos = 0

    def finish(self) -> None:
        if self.remaining != 0:
            raise InternalConsistencyError(
                f"Cursor '{self.name}' has {self.remaining} of {len(self._blocks)} blocks left over"
            )


def sparsity_str(sp: ca.Sparsity) -> str:
    return f"{sp.size1()}x{sp.size2()} ({sp.nnz()} nonzeros)"


def same_sparsity(a: ca.Sparsity, b: ca.Sparsity) -> bool:
    """Structural equality of two patterns."""
    return (
        a.size1() == b.size1()
        and a.size2() == b.size2()
        and a.nnz() == b.nnz()
        and list(a.row()) == list(b.row())
        and list(a.get_col()) == list(b.get_col())
    )


def to_csr(sp: ca.Sparsity) -> sparse.csr_matrix:
    """Convert a casadi pattern to a boolean scipy CSR matrix."""
    rows = np.asarray(sp.row(), dtype=np.int64)
    cols = np.asarray(sp.get_col(), dtype=np.int64)
    data = np.ones(rows.shape[0], dtype=bool)
    return sparse.csr_matrix((data, (rows, cols)), shape=(sp.size1(), sp.size2()))


def jac_pattern(f: ca.Function, oind: int, iind: int) -> sparse.csr_matrix:
    """Structural Jacobian of output ``oind`` w.r.t. input ``iind``, indexed by nonzeros."""
    return to_csr(f.jac_sparsity(int(oind), int(iind), True))
