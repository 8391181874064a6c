import math
import numpy as np
import pytest
from PhyCalPy.Operator import *


################
### HELPERS ####
################

class FixedRateOperator(Operator):
    """
    Operator whose proposals are accepted with a fixed probability. Never
    touches a state.
    """

    def propose(self, state, rng):
        return state, 0.0

    def undo(self, state):
        pass


def simulate(p : float, n : int, delay : int = 0, seed : int = 7) \
        -> tuple[FixedRateOperator, list[float]]:
    """
    Feed an operator n outcomes: accepted (log alpha 0) with probability p,
    rejected (log alpha -inf) otherwise. Returns the operator and the
    unscaled tuning steps, delta * (n_outcomes + 1).
    """
    rng = np.random.default_rng(seed)
    op = FixedRateOperator(1.0, OptimizationSchedule(delay))
    steps = []
    for _ in range(n):
        scale = op.accepted_for_correction + op.rejected_for_correction + 1
        active = op.schedule.is_active()
        if rng.random() < p:
            log_alpha = 0.0
            op.accept()
        else:
            log_alpha = -math.inf
            op.reject()
        delta = op.calc_delta(log_alpha)
        if active:
            steps.append(delta * (scale + 1))
    return op, steps

################
#### TESTS #####
################

def test_weight_required():
    schedule = OptimizationSchedule()
    with pytest.raises(OperatorError):
        FixedRateOperator(None, schedule)
    with pytest.raises(OperatorError):
        FixedRateOperator(0.0, schedule)
    with pytest.raises(OperatorError):
        FixedRateOperator(-2.0, schedule)
    with pytest.raises(OperatorError):
        FixedRateOperator(1.0, schedule, target_acceptance=1.5)
    assert FixedRateOperator(3.0, schedule).weight == 3.0


def test_burn_in():
    """
    No tuning, and no for-correction counting, until the shared schedule has
    seen `delay` adaptable proposals from any operator.
    """
    schedule = OptimizationSchedule(5)
    first = FixedRateOperator(1.0, schedule)
    second = FixedRateOperator(1.0, schedule)

    for op in [first, second, first, second, first]:
        op.accept()
        assert op.calc_delta(0.0) == 0.0
    assert schedule.count == 5
    assert first.accepted == 3
    assert first.accepted_for_correction == 0

    first.accept()
    assert first.accepted_for_correction == 1
    delta = first.calc_delta(0.0)
    # one post burn-in outcome so far
    assert delta == pytest.approx((1.0 - 0.234) / 2.0)
    assert schedule.count == 5


def test_calc_delta_degenerate():
    op = FixedRateOperator(1.0, OptimizationSchedule(0))
    assert op.calc_delta(math.nan) == 0.0
    assert op.calc_delta(5.0) == pytest.approx(1.0 - 0.234)
    assert op.calc_delta(-math.inf) == pytest.approx(-0.234)


def test_tuning_converges_at_target():
    """
    Accepting at exactly the target rate gives steps that average to zero.
    """
    _, steps = simulate(0.234, 40000)
    assert abs(np.mean(steps)) < 0.01


@pytest.mark.parametrize("p", [0.05, 0.5, 0.9])
def test_tuning_sign_away_from_target(p : float):
    """
    Away from the target, steps average to p - target and the cumulative
    adjustment keeps one sign.
    """
    _, steps = simulate(p, 20000)
    assert np.mean(steps) == pytest.approx(p - 0.234, abs=0.02)

    # cumulative tuning drift, 1/(n + 1) weighted
    drift = np.cumsum([s / (i + 2) for i, s in enumerate(steps)])
    assert np.all(np.sign(drift[1000:]) == np.sign(p - 0.234))


def test_report_format():
    op = FixedRateOperator(1.0, OptimizationSchedule(), name="Dummy")
    for _ in range(3):
        op.accept()
    op.reject()

    expected = "Dummy".ljust(70) + "     " + " " + "\t3\t1\t4\t0.75 "
    assert str(op) == expected


def test_report_with_tuning_value():
    class Tuned(FixedRateOperator):
        def get_coercible_value(self):
            return 0.123456789

    op = Tuned(1.0, OptimizationSchedule(), name="x" * 80)
    op.accept()
    op.reject()
    op.reject()

    line = str(op)
    assert line.startswith("x" * 80 + "0.123 \t1\t2\t3\t0.333 ")
