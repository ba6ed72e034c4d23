"""Tests for the integrator lifecycle, options and call surface."""

import logging
import math

import casadi as ca
import pytest

from daesens import ConfigurationError, DimensionMismatchError, IntegratorInput, IntegratorOutput, dae_function

from .common import DM_close, decay_dae, scalar_backward_pair
from .rk4 import RK4Integrator

X0, P = 1.5, 0.7


def decay_xf(x0=X0, p=P, t=1.0):
    return x0 * math.exp(-p * t)


def decay_qf(x0=X0, p=P, t=1.0):
    return x0 * (1 - math.exp(-p * t)) / p


@pytest.fixture
def integrator():
    ret = RK4Integrator(decay_dae())
    ret.init()
    return ret


class TestLifecycle:
    def test_use_before_init(self):
        integrator = RK4Integrator(decay_dae())
        assert not integrator.is_initialized
        with pytest.raises(RuntimeError, match="init"):
            integrator.evaluate()
        with pytest.raises(RuntimeError):
            integrator.dims
        with pytest.raises(RuntimeError):
            integrator.get_derivative(1, 0)
        with pytest.raises(RuntimeError):
            integrator.sp_evaluate(True)

    def test_init_twice(self, integrator):
        with pytest.raises(ConfigurationError, match="already initialized"):
            integrator.init()

    def test_dims_and_buffers(self, integrator):
        d = integrator.dims
        assert (d.nx, d.nq, d.np, d.nrx) == (1, 1, 1, 0)
        assert integrator.input(IntegratorInput.X0).shape == (1, 1)
        assert integrator.input(IntegratorInput.RX0).shape == (0, 1)
        assert integrator.output(IntegratorOutput.RQF).shape == (0, 1)
        assert integrator.t0 == 0.0
        assert integrator.tf == 1.0

    def test_init_logs_dimensions(self, caplog):
        integrator = RK4Integrator(decay_dae(), name="decay")
        with caplog.at_level(logging.DEBUG, logger="daesens.integrator"):
            integrator.init()
        assert "nx=1" in caplog.text
        assert "decay" in caplog.text


class TestOptions:
    def test_defaults(self):
        integrator = RK4Integrator(decay_dae())
        assert integrator.get_option("name") == "unnamed_integrator"
        assert integrator.get_option("print_stats") is False
        assert integrator.get_option("t0") == 0.0
        assert integrator.get_option("tf") == 1.0
        assert integrator.get_option("expand_augmented") is True
        assert not integrator.has_set_option("augmented_options")
        with pytest.raises(ConfigurationError):
            integrator.get_option("augmented_options")

    def test_keyword_options(self):
        integrator = RK4Integrator(decay_dae(), tf=2, number_of_finite_elements=20)
        integrator.init()
        assert integrator.tf == 2.0
        assert integrator.h == pytest.approx(0.1)

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError, match="Unknown option"):
            RK4Integrator(decay_dae(), final_time=2.0)

    def test_print_stats(self, capsys):
        integrator = RK4Integrator(decay_dae(), name="decay", print_stats=True)
        integrator.init()
        integrator.evaluate()
        assert "decay: 50 forward" in capsys.readouterr().out


class TestEvaluate:
    def test_forward(self, integrator):
        integrator.set_input(IntegratorInput.X0, X0)
        integrator.set_input(IntegratorInput.P, P)
        integrator.evaluate()
        assert DM_close(integrator.output(IntegratorOutput.XF), decay_xf(), 1e-8)
        assert DM_close(integrator.output(IntegratorOutput.QF), decay_qf(), 1e-8)
        assert integrator.t == 1.0

    def test_evaluate_twice(self, integrator):
        integrator.set_input(IntegratorInput.X0, X0)
        integrator.set_input(IntegratorInput.P, P)
        integrator.evaluate()
        first = ca.DM(integrator.output(IntegratorOutput.QF))
        integrator.evaluate()
        assert DM_close(integrator.output(IntegratorOutput.QF), first)

    def test_reset(self, integrator):
        integrator.set_input(IntegratorInput.X0, X0)
        integrator.set_input(IntegratorInput.P, P)
        integrator.evaluate()
        integrator.reset()
        assert integrator.t == integrator.t0
        assert DM_close(integrator.output(IntegratorOutput.XF), X0)
        assert DM_close(integrator.output(IntegratorOutput.QF), 0.0)

    def test_backward(self):
        # rx' = x rx in reversed time with x = exp(-t)
        f, g = scalar_backward_pair()
        integrator = RK4Integrator(f, g)
        integrator.init()
        integrator.set_input(IntegratorInput.X0, 1.0)
        integrator.set_input(IntegratorInput.RX0, 2.0)
        integrator.evaluate()
        assert integrator.t == integrator.t0
        growth = math.exp(1 - math.exp(-1))
        assert DM_close(integrator.output(IntegratorOutput.RXF), 2.0 * growth, 1e-6)

    def test_reset_b(self):
        f, g = scalar_backward_pair()
        integrator = RK4Integrator(f, g)
        integrator.init()
        integrator.set_input(IntegratorInput.RX0, 2.0)
        integrator.evaluate()
        integrator.reset_b()
        assert integrator.t == integrator.tf
        assert DM_close(integrator.output(IntegratorOutput.RXF), 2.0)
        assert DM_close(integrator.output(IntegratorOutput.RQF), 0.0)

    def test_wrong_input_shape(self, integrator):
        with pytest.raises(DimensionMismatchError):
            integrator.set_input(IntegratorInput.X0, [1.0, 2.0])

    def test_algebraic_variables_unsupported(self):
        x = ca.SX.sym("x")
        z = ca.SX.sym("z")
        integrator = RK4Integrator(dae_function("dae", x, z, z=z, alg=z + x))
        integrator.init()
        assert integrator.dims.nz == 1
        with pytest.raises(NotImplementedError):
            integrator.evaluate()


class TestCall:
    def test_keyword_call(self, integrator):
        res = integrator(x0=X0, p=P)
        assert DM_close(res["xf"], decay_xf(), 1e-8)
        assert DM_close(res["qf"], decay_qf(), 1e-8)

    def test_call(self, integrator):
        res = integrator.call([X0, P, ca.DM(0, 1), ca.DM(0, 1), ca.DM(0, 1), ca.DM(0, 1)])
        assert len(res) == len(IntegratorOutput)
        assert DM_close(res[IntegratorOutput.XF], decay_xf(), 1e-8)

    def test_symbolic_call(self, integrator):
        x0 = ca.MX.sym("x0")
        p = ca.MX.sym("p")
        res = integrator(x0=x0, p=p)
        fcn = ca.Function("wrapped", [x0, p], [2 * res["xf"]])
        assert DM_close(fcn(X0, P), 2 * decay_xf(), 1e-8)

    def test_function(self, integrator):
        fcn = integrator.function
        assert fcn.name_in() == ["x0", "p", "z0", "rx0", "rp", "rz0"]
        assert fcn.name_out() == ["xf", "qf", "zf", "rxf", "rqf", "rzf"]
