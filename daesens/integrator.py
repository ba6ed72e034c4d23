"""
Integrator base class.

An integrator maps ``(x0, p, z0, rx0, rp, rz0)`` to ``(xf, qf, zf, rxf, rqf,
rzf)`` by integrating a forward DAE ``f`` from ``t0`` to ``tf`` and, when a
backward DAE ``g`` is given, integrating ``g`` back from ``tf`` to ``t0``.

Concrete integrators implement the numeric time stepping
(:meth:`Integrator.integrate`, :meth:`Integrator.integrate_b`) and the factory
:meth:`Integrator.create`. Everything else lives here: dimension resolution,
the augmented problems used for sensitivities, derivative functions, and
structural dependency propagation.

Example:
    >>> integrator = MyIntegrator(f, tf=2.0)
    >>> integrator.init()
    >>> res = integrator(x0=[1.0], p=[0.5])
    >>> res["xf"]
"""

import logging
from abc import ABC, abstractmethod

import casadi as ca
from beartype.typing import Any, List, Optional, Tuple
from scipy import sparse

from .augmented import AugmentedPair, build_augmented
from .bitvector import BitVector
from .derivative import DerivativeFunction, assemble_derivative
from .dimensions import Dimensions, resolve_dimensions
from .errors import ConfigurationError, DimensionMismatchError
from .offsets import AugOffset
from .options import OptionsFunctionality
from .schemes import (
    INTEGRATOR_IN_NAMES,
    INTEGRATOR_OUT_NAMES,
    DAEInput,
    DAEOutput,
    IntegratorInput,
    IntegratorOutput,
    RDAEInput,
    RDAEOutput,
)
from .sparsity import StructuralPropagator
from .symbolic import same_sparsity, sparsity_str

logger = logging.getLogger(__name__)


class _IntegratorCallback(ca.Callback):
    """casadi view of an Integrator, used for calls and derivatives."""

    def __init__(self, integrator, name, opts):
        ca.Callback.__init__(self)
        self._integrator = integrator
        # Derivative functions handed to casadi must outlive this callback's use
        self._derivatives = []
        self.construct(name, opts)

    def get_n_in(self):
        return len(IntegratorInput)

    def get_n_out(self):
        return len(IntegratorOutput)

    def get_name_in(self, i):
        return INTEGRATOR_IN_NAMES[i]

    def get_name_out(self, i):
        return INTEGRATOR_OUT_NAMES[i]

    def get_sparsity_in(self, i):
        return self._integrator._input[i].sparsity()

    def get_sparsity_out(self, i):
        return self._integrator._output[i].sparsity()

    def eval(self, arg):
        integ = self._integrator
        for i, value in enumerate(arg):
            integ.set_input(i, value)
        integ.evaluate()
        return [ca.DM(integ.output(i)) for i in IntegratorOutput]

    def has_forward(self, nfwd):
        return True

    def get_forward(self, nfwd, name, inames, onames, opts):
        der = self._integrator.get_derivative(nfwd, 0)
        self._derivatives.append(der)
        n_in = self.n_in()
        n_out = self.n_out()

        nom_in = [ca.MX.sym(inames[i], self.sparsity_in(i)) for i in range(n_in)]
        nom_out = [ca.MX.sym(inames[n_in + i], self.sparsity_out(i)) for i in range(n_out)]
        seeds = [
            ca.MX.sym(inames[n_in + n_out + i], ca.repmat(self.sparsity_in(i), 1, nfwd))
            for i in range(n_in)
        ]

        # One column of every seed per direction
        columns = [ca.horzsplit(s, 1) for s in seeds]
        der_arg = list(nom_in)
        for direction in range(nfwd):
            der_arg += [columns[i][direction] for i in range(n_in)]
        der_res = der.call(der_arg)

        sens = []
        for i in range(n_out):
            sens.append(ca.horzcat(*[der_res[n_out * (1 + direction) + i] for direction in range(nfwd)]))
        return ca.Function(name, nom_in + nom_out + seeds, sens, inames, onames, opts)

    def has_reverse(self, nadj):
        return True

    def get_reverse(self, nadj, name, inames, onames, opts):
        der = self._integrator.get_derivative(0, nadj)
        self._derivatives.append(der)
        n_in = self.n_in()
        n_out = self.n_out()

        nom_in = [ca.MX.sym(inames[i], self.sparsity_in(i)) for i in range(n_in)]
        nom_out = [ca.MX.sym(inames[n_in + i], self.sparsity_out(i)) for i in range(n_out)]
        seeds = [
            ca.MX.sym(inames[n_in + n_out + i], ca.repmat(self.sparsity_out(i), 1, nadj))
            for i in range(n_out)
        ]

        columns = [ca.horzsplit(s, 1) for s in seeds]
        der_arg = list(nom_in)
        for direction in range(nadj):
            der_arg += [columns[i][direction] for i in range(n_out)]
        der_res = der.call(der_arg)

        sens = []
        for i in range(n_in):
            sens.append(ca.horzcat(*[der_res[n_out + n_in * direction + i] for direction in range(nadj)]))
        return ca.Function(name, nom_in + nom_out + seeds, sens, inames, onames, opts)


class Integrator(OptionsFunctionality, ABC):
    """
    Abstract integrator of a forward DAE and an optional backward DAE.

    Parameters
    ----------
    f : ca.Function
        Forward DAE with the (t, x, z, p) -> (ode, alg, quad) scheme
    g : ca.Function, optional
        Backward DAE with the (t, x, z, p, rx, rz, rp) -> (rode, ralg, rquad)
        scheme
    **options
        Any declared option, e.g. ``tf=2.0``

    Notes
    -----
    Subclasses declare their own options in :meth:`declare_options`, which
    runs before the keyword options are applied.
    """

    def __init__(self, f: ca.Function, g: Optional[ca.Function] = None, **options: Any) -> None:
        super().__init__()
        self.add_option("name", str, "unnamed_integrator", "name of the integrator")
        self.add_option("print_stats", bool, False, "Print out statistics after integration")
        self.add_option("t0", float, 0.0, "Beginning of the time horizon")
        self.add_option("tf", float, 1.0, "End of the time horizon")
        self.add_option("augmented_options", dict, description="Options to be passed down to the augmented integrator, if one is constructed")
        self.add_option("expand_augmented", bool, True, "If DAE callback functions are SX, expand the augmented problem if it is MX")
        self.declare_options()
        self.set_options(options)

        self._f = f
        self._g = g
        self._dims: Optional[Dimensions] = None
        self._initialized = False
        self._input: List[ca.DM] = []
        self._output: List[ca.DM] = []
        self._t0 = 0.0
        self._tf = 1.0
        self.t = 0.0
        self._propagator: Optional[StructuralPropagator] = None
        self._function: Optional[_IntegratorCallback] = None

    def declare_options(self) -> None:
        """Hook for subclasses to declare additional options."""

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    def init(self) -> None:
        """Resolve dimensions, allocate buffers and wrap the integrator for casadi."""
        if self._initialized:
            raise ConfigurationError(f"Integrator '{self.get_option('name')}' is already initialized")

        f, g = self._f, self._g
        d = resolve_dimensions(f, g)
        self._dims = d

        # Inputs
        self._input = [ca.DM()] * len(IntegratorInput)
        self._input[IntegratorInput.X0] = ca.DM.zeros(f.sparsity_in(DAEInput.X))
        self._input[IntegratorInput.P] = ca.DM.zeros(f.sparsity_in(DAEInput.P))
        self._input[IntegratorInput.Z0] = ca.DM.zeros(f.sparsity_in(DAEInput.Z))
        if g is None:
            self._input[IntegratorInput.RX0] = ca.DM(0, 1)
            self._input[IntegratorInput.RP] = ca.DM(0, 1)
            self._input[IntegratorInput.RZ0] = ca.DM(0, 1)
        else:
            self._input[IntegratorInput.RX0] = ca.DM.zeros(g.sparsity_in(RDAEInput.RX))
            self._input[IntegratorInput.RP] = ca.DM.zeros(g.sparsity_in(RDAEInput.RP))
            self._input[IntegratorInput.RZ0] = ca.DM.zeros(g.sparsity_in(RDAEInput.RZ))

        # Outputs
        self._output = [ca.DM()] * len(IntegratorOutput)
        self._output[IntegratorOutput.XF] = ca.DM(self._input[IntegratorInput.X0])
        self._output[IntegratorOutput.QF] = ca.DM.zeros(f.sparsity_out(DAEOutput.QUAD))
        self._output[IntegratorOutput.ZF] = ca.DM(self._input[IntegratorInput.Z0])
        self._output[IntegratorOutput.RXF] = ca.DM(self._input[IntegratorInput.RX0])
        self._output[IntegratorOutput.RZF] = ca.DM(self._input[IntegratorInput.RZ0])
        if g is None:
            self._output[IntegratorOutput.RQF] = ca.DM(0, 1)
        else:
            self._output[IntegratorOutput.RQF] = ca.DM.zeros(g.sparsity_out(RDAEOutput.QUAD))

        logger.debug(
            "Integrator '%s' dimensions: nx=%d, nz=%d, nq=%d, np=%d, nrx=%d, nrz=%d, nrq=%d, nrp=%d",
            self.get_option("name"), d.nx, d.nz, d.nq, d.np, d.nrx, d.nrz, d.nrq, d.nrp,
        )

        self._t0 = self.get_option("t0")
        self._tf = self.get_option("tf")
        self.t = self._t0

        self._propagator = StructuralPropagator(f, g, d)
        self._initialized = True
        self._function = _IntegratorCallback(self, self.get_option("name"), {})

    def _ensure_initialized(self) -> None:
        """Raise an error if the integrator hasn't been initialized yet."""
        if not self._initialized:
            raise RuntimeError("Integrator must be initialized before use. Call init() first.")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def evaluate(self) -> None:
        """Integrate forward over [t0, tf] and, if there is a backward problem, back again."""
        self._ensure_initialized()
        self.reset()
        self.integrate(self._tf)
        if self._dims.nrx > 0:
            self.reset_b()
            self.integrate_b(self._t0)
        if self.get_option("print_stats"):
            self.print_stats()

    def reset(self) -> None:
        """Reset the forward problem to t0."""
        self._ensure_initialized()
        self.t = self._t0
        self._output[IntegratorOutput.XF] = ca.DM(self._input[IntegratorInput.X0])
        self._output[IntegratorOutput.ZF] = ca.DM(self._input[IntegratorInput.Z0])
        self._output[IntegratorOutput.QF] = ca.DM.zeros(self._output[IntegratorOutput.QF].sparsity())

    def reset_b(self) -> None:
        """Reset the backward problem to tf."""
        self._ensure_initialized()
        self.t = self._tf
        self._output[IntegratorOutput.RXF] = ca.DM(self._input[IntegratorInput.RX0])
        self._output[IntegratorOutput.RZF] = ca.DM(self._input[IntegratorInput.RZ0])
        self._output[IntegratorOutput.RQF] = ca.DM.zeros(self._output[IntegratorOutput.RQF].sparsity())

    @abstractmethod
    def integrate(self, t_out: float) -> None:
        """Advance the forward problem from the current time to ``t_out``."""

    @abstractmethod
    def integrate_b(self, t_out: float) -> None:
        """Advance the backward problem from the current time back to ``t_out``."""

    @abstractmethod
    def create(self, f: ca.Function, g: Optional[ca.Function] = None) -> "Integrator":
        """Create an uninitialized integrator of the same kind for another DAE."""

    def print_stats(self) -> None:
        d = self._dims
        print(
            f"{self.get_option('name')}: integrated nx={d.nx}, nz={d.nz}, nq={d.nq} "
            f"over [{self._t0}, {self._tf}]"
            + (f", backward nrx={d.nrx}, nrz={d.nrz}, nrq={d.nrq}" if d.has_backward else "")
        )

    # ---------------------------------------------------------------------
    # Buffers
    # ---------------------------------------------------------------------

    @property
    def f(self) -> ca.Function:
        return self._f

    @property
    def g(self) -> Optional[ca.Function]:
        return self._g

    @property
    def dims(self) -> Dimensions:
        self._ensure_initialized()
        return self._dims

    @property
    def t0(self) -> float:
        self._ensure_initialized()
        return self._t0

    @property
    def tf(self) -> float:
        self._ensure_initialized()
        return self._tf

    def input(self, i: int) -> ca.DM:
        self._ensure_initialized()
        return self._input[i]

    def output(self, i: int) -> ca.DM:
        self._ensure_initialized()
        return self._output[i]

    def _project(self, value: Any, sp: ca.Sparsity, what: str) -> ca.DM:
        v = ca.DM(value)
        if v.shape != (sp.size1(), sp.size2()):
            if v.numel() != sp.numel():
                raise DimensionMismatchError(f"Wrong shape for {what}.", sparsity_str(sp), f"{v.size1()}x{v.size2()}")
            v = ca.reshape(v, sp.size1(), sp.size2())
        if not same_sparsity(v.sparsity(), sp):
            v = ca.project(v, sp)
        return v

    def set_input(self, i: int, value: Any) -> None:
        self._ensure_initialized()
        self._input[i] = self._project(value, self._input[i].sparsity(), INTEGRATOR_IN_NAMES[i])

    def set_output(self, i: int, value: Any) -> None:
        self._ensure_initialized()
        self._output[i] = self._project(value, self._output[i].sparsity(), INTEGRATOR_OUT_NAMES[i])

    def sp_input(self, i: int) -> BitVector:
        self._ensure_initialized()
        return self._propagator.input[i]

    def sp_output(self, i: int) -> BitVector:
        self._ensure_initialized()
        return self._propagator.output[i]

    # ---------------------------------------------------------------------
    # Sensitivities
    # ---------------------------------------------------------------------

    def get_augmented(self, nfwd: int, nadj: int) -> Tuple[AugmentedPair, AugOffset]:
        """
        Augmented DAE pair for ``nfwd`` forward and ``nadj`` adjoint directions.

        Returns
        -------
        tuple
            ``(AugmentedPair(forward, backward), AugOffset)``
        """
        self._ensure_initialized()
        return build_augmented(
            self._f,
            self._g,
            self._dims,
            nfwd,
            nadj,
            expand=self.get_option("expand_augmented"),
            name=self.get_option("name"),
        )

    def set_derivative_options(self, integrator: "Integrator", offset: AugOffset) -> None:
        """Pass this integrator's options on to an augmented integrator."""
        integrator.set_options(self.dictionary())

    def get_derivative(self, nfwd: int, nadj: int) -> DerivativeFunction:
        """Function computing the outputs together with their forward and adjoint sensitivities."""
        self._ensure_initialized()
        return assemble_derivative(self, nfwd, nadj)

    def sp_evaluate(self, forward: bool) -> None:
        """Propagate dependency bits between :meth:`sp_input` and :meth:`sp_output`."""
        self._ensure_initialized()
        self._propagator.propagate(forward)

    def jac_sparsity(self, oind: int, iind: int) -> sparse.csr_matrix:
        """Structural Jacobian of output ``oind`` with respect to input ``iind``."""
        self._ensure_initialized()
        return self._propagator.jac_sparsity(oind, iind)

    def jacobian(self, iind: int, oind: int) -> ca.Function:
        """
        Jacobian of output ``oind`` with respect to input ``iind``.

        The returned function takes the integrator inputs and returns the
        Jacobian followed by the integrator outputs.
        """
        self._ensure_initialized()
        arg = [ca.MX.sym(INTEGRATOR_IN_NAMES[i], self._input[i].sparsity()) for i in IntegratorInput]
        res = self.call(arg)
        jac = ca.jacobian(res[oind], arg[iind])
        name = f"{self.get_option('name')}_jac_{INTEGRATOR_OUT_NAMES[oind]}_{INTEGRATOR_IN_NAMES[iind]}"
        return ca.Function(name, arg, [jac] + list(res), INTEGRATOR_IN_NAMES, ["jac"] + INTEGRATOR_OUT_NAMES)

    # ---------------------------------------------------------------------
    # Calls
    # ---------------------------------------------------------------------

    @property
    def function(self) -> ca.Function:
        """The integrator as a casadi Function."""
        self._ensure_initialized()
        return self._function

    def call(self, args: List) -> List:
        self._ensure_initialized()
        return self._function.call(args)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        self._ensure_initialized()
        return self._function(*args, **kwargs)

