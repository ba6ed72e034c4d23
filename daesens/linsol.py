"""
Structural linear solver.

Stands in for a numeric linear solver when only dependency information is
needed: for ``A x = b`` with a given sparsity pattern of ``A``, element
``x[i]`` may depend on ``b[j]`` whenever ``j`` is reachable from ``i``
through the nonzeros of ``A`` (row -> column). The reachability matrix is
the transitive closure of ``A | I``, computed once at construction.
"""

import numpy as np
from scipy import sparse

from .bitvector import BitVector, sp_forward
from .errors import DimensionMismatchError


def transitive_closure(pattern: sparse.spmatrix) -> sparse.csr_matrix:
    """Boolean reachability matrix of ``pattern | I`` (by repeated squaring)."""
    n = pattern.shape[0]
    reach = sparse.csr_matrix(pattern, dtype=np.int64) + sparse.identity(n, dtype=np.int64, format="csr")
    reach = sparse.csr_matrix(reach)
    reach.data[:] = 1
    while True:
        nxt = sparse.csr_matrix(reach @ reach)
        nxt.data[:] = 1
        if nxt.nnz == reach.nnz:
            break
        reach = nxt
    return reach.astype(bool).tocsr()


class StructuralLinearSolver:
    """Bit-vector solve with a fixed square coefficient pattern."""

    def __init__(self, pattern: sparse.spmatrix):
        if pattern.shape[0] != pattern.shape[1]:
            raise DimensionMismatchError("Linear solver pattern must be square.", "n x n", f"{pattern.shape[0]} x {pattern.shape[1]}")
        self.pattern = sparse.csr_matrix(pattern, dtype=bool)
        self._reach = transitive_closure(self.pattern)
        self._reach_t = self._reach.T.tocsr()

    @property
    def n(self) -> int:
        return self.pattern.shape[0]

    def sp_solve(self, dst: BitVector, src: BitVector, transposed: bool = False) -> None:
        """
        OR into ``dst`` the masks of the solution of ``A x = src``
        (``A^T x = src`` if ``transposed``). ``dst`` keeps the masks it
        already carries.
        """
        if len(dst) != self.n or len(src) != self.n:
            raise DimensionMismatchError("Structural solve size mismatch.", self.n, (len(dst), len(src)))
        reach = self._reach_t if transposed else self._reach
        dst |= sp_forward(reach, src)
