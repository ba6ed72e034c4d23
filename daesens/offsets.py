"""
Offsets of the per-direction blocks inside the augmented vectors.

A direction is the nondifferentiated problem, one of ``nfwd`` forward
sensitivity directions or one of ``nadj`` adjoint directions. Adjoint
directions swap forward and backward vectors: the seed of an adjoint
direction enters through the backward vectors and its result appears on the
forward ones, and vice versa.
"""

from dataclasses import dataclass, field, fields
from itertools import accumulate

from beartype.typing import List

from .dimensions import Dimensions
from .errors import ConfigurationError


@dataclass
class AugOffset:
    """Cumulative block offsets, one list per augmented vector."""

    x: List[int] = field(default_factory=lambda: [0])
    z: List[int] = field(default_factory=lambda: [0])
    q: List[int] = field(default_factory=lambda: [0])
    p: List[int] = field(default_factory=lambda: [0])
    rx: List[int] = field(default_factory=lambda: [0])
    rz: List[int] = field(default_factory=lambda: [0])
    rq: List[int] = field(default_factory=lambda: [0])
    rp: List[int] = field(default_factory=lambda: [0])

    def as_dict(self) -> dict:
        return {f.name: list(getattr(self, f.name)) for f in fields(self)}


def aug_offset(dims: Dimensions, nfwd: int, nadj: int) -> AugOffset:
    """
    Compute the augmented-vector offsets for ``nfwd`` forward and ``nadj``
    adjoint directions.

    Zero-sized vectors never get a block, so the lists can have different
    lengths.

    Example:
        >>> aug_offset(Dimensions(nx=2, nz=0, nq=0, np=1), 1, 0).x
        [0, 2, 4]
    """
    if nfwd < 0 or nadj < 0:
        raise ConfigurationError(f"Direction counts must be non-negative, got nfwd={nfwd}, nadj={nadj}")

    ret = AugOffset()

    def push(seq: List[int], size: int) -> None:
        if size > 0:
            seq.append(size)

    # Nondifferentiated and forward directions
    for _ in range(-1, nfwd):
        push(ret.x, dims.nx)
        push(ret.z, dims.nz)
        push(ret.q, dims.nq)
        push(ret.p, dims.np)
        push(ret.rx, dims.nrx)
        push(ret.rz, dims.nrz)
        push(ret.rq, dims.nrq)
        push(ret.rp, dims.nrp)

    # Adjoint directions
    for _ in range(nadj):
        push(ret.rx, dims.nx)
        push(ret.rz, dims.nz)
        push(ret.rq, dims.np)
        push(ret.rp, dims.nq)
        push(ret.x, dims.nrx)
        push(ret.z, dims.nrz)
        push(ret.q, dims.nrp)
        push(ret.p, dims.nrq)

    for f in fields(ret):
        setattr(ret, f.name, list(accumulate(getattr(ret, f.name))))
    return ret
