"""
Bit-vector dependency masks and structural evaluation of CasADi functions.

Each element of a vector carries a 64-bit mask. Bit ``k`` set on an output
element means "may depend on whatever was seeded with bit ``k``". Masks only
ever grow (bitwise OR); propagation never clears a bit.
"""

from __future__ import annotations

import casadi as ca
import numpy as np
from beartype.typing import Dict, List, Sequence, Tuple
from scipy import sparse

from .errors import DimensionMismatchError
from .symbolic import jac_pattern

BVEC_WIDTH = 64


class BitVector:
    """Dependency masks, one ``uint64`` per vector element."""

    __hash__ = None

    def __init__(self, bits=()):
        self.bits = np.array(bits, dtype=np.uint64).reshape(-1)

    @classmethod
    def zeros(cls, n: int) -> BitVector:
        return cls(np.zeros(n, dtype=np.uint64))

    @classmethod
    def full(cls, n: int, mask: int) -> BitVector:
        return cls(np.full(n, mask, dtype=np.uint64))

    @classmethod
    def seeded(cls, n: int, offset: int = 0) -> BitVector:
        """Element ``offset + k`` gets bit ``k`` for ``0 <= k < 64``; all others zero."""
        ret = cls.zeros(n)
        stop = min(n, offset + BVEC_WIDTH)
        for i in range(max(offset, 0), stop):
            ret.bits[i] = np.uint64(1) << np.uint64(i - offset)
        return ret

    @classmethod
    def from_mask(cls, mask, bit: int = 0) -> BitVector:
        """Set ``bit`` on every element where the boolean ``mask`` is true."""
        mask = np.asarray(mask, dtype=bool).reshape(-1)
        ret = cls.zeros(mask.shape[0])
        ret.bits[mask] = np.uint64(1) << np.uint64(bit)
        return ret

    @classmethod
    def concat(cls, *parts: BitVector) -> BitVector:
        if not parts:
            return cls.zeros(0)
        return cls(np.concatenate([p.bits for p in parts]))

    def __len__(self) -> int:
        return self.bits.shape[0]

    def __getitem__(self, index: slice) -> BitVector:
        return BitVector(self.bits[index])

    def __or__(self, other: BitVector) -> BitVector:
        self._check_len(other)
        return BitVector(self.bits | other.bits)

    def __ior__(self, other: BitVector) -> BitVector:
        self._check_len(other)
        self.bits |= other.bits
        return self

    def __eq__(self, other):
        if not isinstance(other, BitVector):
            return NotImplemented
        return len(self) == len(other) and bool(np.all(self.bits == other.bits))

    def __repr__(self) -> str:
        return f"BitVector([{', '.join(hex(int(b)) for b in self.bits)}])"

    def _check_len(self, other: BitVector) -> None:
        if len(self) != len(other):
            raise DimensionMismatchError("Bit vector length mismatch.", len(self), len(other))

    def copy(self) -> BitVector:
        return BitVector(self.bits.copy())

    def set(self, other: BitVector) -> None:
        """Overwrite the masks in place with those of ``other``."""
        self._check_len(other)
        self.bits[:] = other.bits

    def set_zero(self) -> None:
        self.bits[:] = 0

    def fill(self, mask: int) -> None:
        self.bits[:] = np.uint64(mask)

    def any(self) -> int:
        """Union of all element masks."""
        if len(self) == 0:
            return 0
        return int(np.bitwise_or.reduce(self.bits))

    def to_mask(self, bit: int) -> np.ndarray:
        """Boolean array: which elements have ``bit`` set."""
        return ((self.bits >> np.uint64(bit)) & np.uint64(1)) == np.uint64(1)

    def split(self, sizes: Sequence[int]) -> List[BitVector]:
        if sum(sizes) != len(self):
            raise DimensionMismatchError("Cannot split bit vector.", sum(sizes), len(self))
        ret = []
        start = 0
        for n in sizes:
            ret.append(self[start : start + n])
            start += n
        return ret


def sp_forward(pattern: sparse.csr_matrix, bits: BitVector) -> BitVector:
    """Masks of ``y`` for ``y = A x``: row ``r`` gets the union of ``x`` over its nonzero columns."""
    if pattern.shape[1] != len(bits):
        raise DimensionMismatchError("Pattern/bit vector mismatch.", pattern.shape[1], len(bits))
    ret = BitVector.zeros(pattern.shape[0])
    for r in range(pattern.shape[0]):
        cols = pattern.indices[pattern.indptr[r] : pattern.indptr[r + 1]]
        if cols.size:
            ret.bits[r] = np.bitwise_or.reduce(bits.bits[cols])
    return ret


class StructuralFunction:
    """
    Bit-level evaluation of a casadi Function.

    Jacobian patterns of every output/input block are computed on first use
    and kept for the lifetime of the object.
    """

    def __init__(self, f: ca.Function):
        self.f = f
        self._patterns: Dict[Tuple[int, int], sparse.csr_matrix] = {}

    def pattern(self, oind: int, iind: int) -> sparse.csr_matrix:
        key = (int(oind), int(iind))
        if key not in self._patterns:
            self._patterns[key] = jac_pattern(self.f, oind, iind)
        return self._patterns[key]

    def _check_inputs(self, arg: Sequence[BitVector], n: int, size) -> None:
        if len(arg) != n:
            raise DimensionMismatchError(f"Wrong number of bit vectors for '{self.f.name()}'.", n, len(arg))
        for i, a in enumerate(arg):
            if len(a) != size(i):
                raise DimensionMismatchError(
                    f"Bit vector {i} of '{self.f.name()}' has the wrong length.", size(i), len(a)
                )

    def forward(self, arg: Sequence[BitVector]) -> List[BitVector]:
        """Output masks given input masks."""
        self._check_inputs(arg, self.f.n_in(), self.f.nnz_in)
        res = []
        for o in range(self.f.n_out()):
            out = BitVector.zeros(self.f.nnz_out(o))
            for i in range(self.f.n_in()):
                if len(arg[i]) and len(out):
                    out |= sp_forward(self.pattern(o, i), arg[i])
            res.append(out)
        return res
