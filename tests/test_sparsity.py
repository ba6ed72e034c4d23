"""Tests for structural dependency propagation through an integrator."""

import casadi as ca
import numpy as np
import pytest

from daesens import IntegratorInput, IntegratorOutput, dae_function, resolve_dimensions
from daesens.bitvector import BitVector
from daesens.sparsity import StructuralPropagator, integrator_io_sizes, sp_jac_f

from .common import coupled_dae, diagonal_dae, implicit_pair, scalar_backward_pair
from .rk4 import RK4Integrator


def _integrator(f, g=None):
    integrator = RK4Integrator(f, g)
    integrator.init()
    return integrator


class TestCoefficientPattern:
    def test_coupled(self):
        f = coupled_dae()
        assert sp_jac_f(f, resolve_dimensions(f)).toarray().all()

    def test_diagonal(self):
        f = diagonal_dae()
        assert (sp_jac_f(f, resolve_dimensions(f)).toarray() == np.eye(2, dtype=bool)).all()

    def test_with_algebraic_variables(self):
        x = ca.SX.sym("x", 2)
        z = ca.SX.sym("z")
        f = dae_function("dae", x, ca.vertcat(z, -x[1]), z=z, alg=z - x[0])
        pattern = sp_jac_f(f, resolve_dimensions(f)).toarray()
        assert pattern.tolist() == [
            [True, False, True],
            [False, True, False],
            [True, False, True],
        ]


def test_io_sizes():
    f, g = scalar_backward_pair()
    n_in, n_out = integrator_io_sizes(resolve_dimensions(f, g))
    assert n_in == [1, 0, 0, 1, 0, 0]
    assert n_out == [1, 0, 0, 1, 1, 0]


class TestForwardPropagation:
    def test_coupled_states_mix(self):
        integrator = _integrator(coupled_dae())
        integrator.sp_input(IntegratorInput.X0).set(BitVector([1, 2]))
        integrator.sp_evaluate(True)
        assert integrator.sp_output(IntegratorOutput.XF) == BitVector([3, 3])

    def test_diagonal_states_stay_apart(self):
        integrator = _integrator(diagonal_dae())
        integrator.sp_input(IntegratorInput.X0).set(BitVector([1, 2]))
        integrator.sp_input(IntegratorInput.P).set(BitVector([4]))
        integrator.sp_evaluate(True)
        assert integrator.sp_output(IntegratorOutput.XF) == BitVector([1, 6])
        assert integrator.sp_output(IntegratorOutput.QF) == BitVector([1])

    def test_idempotent(self):
        integrator = _integrator(diagonal_dae())
        integrator.sp_input(IntegratorInput.X0).set(BitVector([1, 2]))
        integrator.sp_input(IntegratorInput.P).set(BitVector([4]))
        integrator.sp_evaluate(True)
        first = [integrator.sp_output(i).copy() for i in IntegratorOutput]
        integrator.sp_evaluate(True)
        assert [integrator.sp_output(i) for i in IntegratorOutput] == first

    def test_backward_problem(self):
        f, g = scalar_backward_pair()
        integrator = _integrator(f, g)
        integrator.sp_input(IntegratorInput.X0).set(BitVector([1]))
        integrator.sp_input(IntegratorInput.RX0).set(BitVector([2]))
        integrator.sp_evaluate(True)
        assert integrator.sp_output(IntegratorOutput.XF) == BitVector([1])
        assert integrator.sp_output(IntegratorOutput.RXF) == BitVector([3])
        assert integrator.sp_output(IntegratorOutput.RQF) == BitVector([3])

    def test_propagator_standalone(self):
        f = coupled_dae()
        prop = StructuralPropagator(f, None, resolve_dimensions(f))
        prop.input[IntegratorInput.P].set(BitVector([8]))
        prop.propagate(True)
        assert prop.output[IntegratorOutput.XF] == BitVector([8, 8])


class TestReversePropagation:
    def test_all_inputs_get_all_bits(self):
        integrator = _integrator(diagonal_dae())
        integrator.sp_output(IntegratorOutput.XF).set(BitVector([1, 0]))
        integrator.sp_output(IntegratorOutput.QF).set(BitVector([2]))
        integrator.sp_evaluate(False)
        assert integrator.sp_input(IntegratorInput.X0) == BitVector([3, 3])
        assert integrator.sp_input(IntegratorInput.P) == BitVector([3])

    def test_backward_outputs_reach_backward_inputs_only(self):
        f, g = scalar_backward_pair()
        integrator = _integrator(f, g)
        integrator.sp_output(IntegratorOutput.XF).set(BitVector([2]))
        integrator.sp_output(IntegratorOutput.RXF).set(BitVector([1]))
        integrator.sp_evaluate(False)
        assert integrator.sp_input(IntegratorInput.RX0) == BitVector([1])
        assert integrator.sp_input(IntegratorInput.X0) == BitVector([3])


class TestJacSparsity:
    def test_coupled(self):
        integrator = _integrator(coupled_dae())
        jac = integrator.jac_sparsity(IntegratorOutput.XF, IntegratorInput.X0)
        assert jac.shape == (2, 2)
        assert jac.toarray().all()

    def test_diagonal(self):
        integrator = _integrator(diagonal_dae())
        assert (integrator.jac_sparsity(IntegratorOutput.XF, IntegratorInput.X0).toarray() == np.eye(2, dtype=bool)).all()
        assert integrator.jac_sparsity(IntegratorOutput.XF, IntegratorInput.P).toarray().tolist() == [[False], [True]]
        assert integrator.jac_sparsity(IntegratorOutput.QF, IntegratorInput.X0).toarray().tolist() == [[True, False]]

    def test_backward(self):
        f, g = scalar_backward_pair()
        integrator = _integrator(f, g)
        assert integrator.jac_sparsity(IntegratorOutput.RXF, IntegratorInput.X0).toarray().tolist() == [[True]]
        assert integrator.jac_sparsity(IntegratorOutput.RQF, IntegratorInput.RX0).toarray().tolist() == [[True]]
        assert integrator.jac_sparsity(IntegratorOutput.XF, IntegratorInput.RX0).toarray().tolist() == [[False]]

    def test_wide_input(self):
        # More inputs than fit in one 64-bit sweep
        x = ca.SX.sym("x", 70)
        f = dae_function("wide", x, -x, quad=ca.sum1(x[65:]))
        integrator = _integrator(f)
        jac = integrator.jac_sparsity(IntegratorOutput.QF, IntegratorInput.X0).toarray()
        assert jac.shape == (1, 70)
        assert jac[0, 65:].all()
        assert not jac[0, :65].any()

    def test_buffers_restored(self):
        integrator = _integrator(diagonal_dae())
        integrator.sp_input(IntegratorInput.X0).set(BitVector([5, 7]))
        integrator.jac_sparsity(IntegratorOutput.XF, IntegratorInput.X0)
        assert integrator.sp_input(IntegratorInput.X0) == BitVector([5, 7])

    @pytest.mark.parametrize("oind", list(IntegratorOutput))
    def test_shapes(self, oind):
        integrator = _integrator(diagonal_dae())
        jac = integrator.jac_sparsity(oind, IntegratorInput.X0)
        assert jac.shape == (len(integrator.sp_output(oind)), 2)


class TestAlgebraicPropagation:
    """Forward masks through the implicit ode/alg coupling of both problems."""

    def _propagator(self):
        f, g = implicit_pair()
        return StructuralPropagator(f, g, resolve_dimensions(f, g))

    def test_first_state_reaches_algebraic_output(self):
        prop = self._propagator()
        prop.input[IntegratorInput.X0].set(BitVector([1, 0]))
        prop.propagate(True)
        # alg = z - x0 ties z to x0, then x0' = z and q' = z + x1
        assert prop.output[IntegratorOutput.ZF] == BitVector([1])
        assert prop.output[IntegratorOutput.XF] == BitVector([1, 0])
        assert prop.output[IntegratorOutput.QF] == BitVector([1])

    def test_forward_problem(self):
        prop = self._propagator()
        prop.input[IntegratorInput.X0].set(BitVector([1, 2]))
        prop.input[IntegratorInput.P].set(BitVector([4]))
        prop.propagate(True)
        assert prop.output[IntegratorOutput.XF] == BitVector([1, 6])
        assert prop.output[IntegratorOutput.ZF] == BitVector([1])
        assert prop.output[IntegratorOutput.QF] == BitVector([7])

    def test_backward_problem(self):
        prop = self._propagator()
        prop.input[IntegratorInput.X0].set(BitVector([1, 2]))
        prop.input[IntegratorInput.P].set(BitVector([4]))
        prop.input[IntegratorInput.RX0].set(BitVector([8, 16]))
        prop.input[IntegratorInput.RP].set(BitVector([32]))
        prop.propagate(True)
        # ralg = rz - rx1 pulls rx1 into rz, rx0' = x0 rx0 + rz pulls it into rx0
        assert prop.output[IntegratorOutput.RZF] == BitVector([48])
        assert prop.output[IntegratorOutput.RXF] == BitVector([57, 48])
        assert prop.output[IntegratorOutput.RQF] == BitVector([57])

    def test_algebraic_guess_ignored(self):
        prop = self._propagator()
        prop.input[IntegratorInput.Z0].set(BitVector([1]))
        prop.input[IntegratorInput.RZ0].set(BitVector([2]))
        prop.propagate(True)
        for oind in IntegratorOutput:
            assert not prop.output[oind].any()

    def test_reverse_clears_algebraic_guess(self):
        prop = self._propagator()
        prop.input[IntegratorInput.Z0].set(BitVector([1]))
        prop.output[IntegratorOutput.ZF].set(BitVector([2]))
        prop.propagate(False)
        assert prop.input[IntegratorInput.Z0] == BitVector([0])
        assert prop.input[IntegratorInput.X0] == BitVector([2, 2])
        assert prop.input[IntegratorInput.RX0] == BitVector([0, 0])

    def test_jac_sparsity(self):
        prop = self._propagator()
        assert prop.jac_sparsity(IntegratorOutput.ZF, IntegratorInput.X0).toarray().tolist() == [[True, False]]
        assert prop.jac_sparsity(IntegratorOutput.RZF, IntegratorInput.RP).toarray().tolist() == [[True]]
        assert prop.jac_sparsity(IntegratorOutput.RZF, IntegratorInput.RX0).toarray().tolist() == [[False, True]]
