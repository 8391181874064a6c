import io
import math
from unittest.mock import MagicMock

import numpy as np
import pytest
from scipy import stats

from PhyCalPy.MetropolisHastings import *
from PhyCalPy.CalibratedYule import CalibratedYuleModel
from PhyCalPy.Calibration import CalibrationPoint
from PhyCalPy.Distribution import CompoundDistribution, ParameterPrior
from PhyCalPy.Logger import TraceLogger
from PhyCalPy.Operator import Operator, OptimizationSchedule
from PhyCalPy.State import RealParameter, State
from PhyCalPy.Tree import Tree
from PhyCalPy.TreeOperators import NarrowExchangeOperator, ScaleOperator, \
                                   TreeScaleOperator, UniformOperator


################
### HELPERS ####
################

FIVE_TAXA = "(((A:1,B:1):1,C:2):2,(D:3,E:3):1);"


def calibrated_chain(chain_length : int = 3000,
                     log_every : int = 500,
                     trace : TraceLogger | None = None) -> MCMC:
    tree = Tree.from_newick(FIVE_TAXA)
    rate = RealParameter(1.0, 0.0, name="birthRate")
    state = State(tree, [rate])

    cals = [CalibrationPoint(["A", "B", "C"], stats.uniform(1.0, 3.0)),
            CalibrationPoint(["A", "B"], stats.uniform(0.5, 1.5))]
    model = CalibratedYuleModel(tree, rate, cals)
    posterior = CompoundDistribution([model,
                                      ParameterPrior(rate, stats.expon())])

    schedule = OptimizationSchedule(100)
    operators = [ScaleOperator("birthRate", 1.0, schedule),
                 TreeScaleOperator(1.0, schedule),
                 UniformOperator(3.0, schedule),
                 NarrowExchangeOperator(3.0, schedule)]
    return MCMC(state, posterior, operators, chain_length, log_every, 42,
                trace)


class StubOperator(Operator):

    def __init__(self, log_hr : float, schedule : OptimizationSchedule):
        super().__init__(1.0, schedule, name="stub")
        self.log_hr = log_hr
        self.undone = 0
        self.optimized = []

    def propose(self, state, rng):
        return state, self.log_hr

    def undo(self, state):
        self.undone += 1

    def optimize(self, log_alpha):
        self.optimized.append(log_alpha)


def stub_chain(log_hr : float, posterior_values : list[float]):
    posterior = MagicMock()
    posterior.calculate_log_p.side_effect = posterior_values
    op = StubOperator(log_hr, OptimizationSchedule())
    state = State(Tree.from_newick("((A:1,B:1):1,C:2);"))
    chain = MCMC(state, posterior, [op], chain_length=1, seed=1)
    return chain, op, posterior

################
#### TESTS #####
################

def test_invalid_move_always_rejected():
    """
    An invalid proposal is rejected and undone without evaluating the
    posterior or tuning the operator.
    """
    chain, op, posterior = stub_chain(-math.inf, [0.0])
    chain.current_log_p = 0.0
    assert chain.step() is False
    assert op.rejected == 1
    assert op.undone == 1
    assert op.optimized == []
    posterior.calculate_log_p.assert_not_called()


def test_gibbs_move_always_accepted():
    chain, op, _ = stub_chain(math.inf, [-1000.0])
    chain.current_log_p = 0.0
    assert chain.step() is True
    assert op.accepted == 1
    assert op.undone == 0
    assert chain.current_log_p == -1000.0


def test_metropolis_hastings_rule():
    chain, op, _ = stub_chain(0.0, [5.0])
    chain.current_log_p = 0.0
    assert chain.step() is True
    assert op.optimized == [5.0]

    chain, op, _ = stub_chain(0.0, [-math.inf])
    chain.current_log_p = 0.0
    assert chain.step() is False
    assert op.rejected == 1
    assert op.undone == 1
    assert op.optimized == [-math.inf]


def test_bad_start_state():
    tree = Tree.from_newick(FIVE_TAXA)
    cal = CalibrationPoint(["A", "D"], stats.uniform(0.0, 10.0))
    model = CalibratedYuleModel(tree, 1.0, [cal])
    state = State(tree)
    chain = MCMC(state, model,
                 [UniformOperator(1.0, OptimizationSchedule())], 10)
    with pytest.raises(MetropolisHastingsException):
        chain.run()


def test_bad_settings():
    state = State(Tree.from_newick(FIVE_TAXA))
    posterior = MagicMock()
    with pytest.raises(MetropolisHastingsException):
        MCMC(state, posterior, [])
    op = UniformOperator(1.0, OptimizationSchedule())
    with pytest.raises(MetropolisHastingsException):
        MCMC(state, posterior, [op], log_every=0)


def test_operator_selection_by_weight():
    schedule = OptimizationSchedule()
    heavy = UniformOperator(9.0, schedule, name="heavy")
    light = UniformOperator(1.0, schedule, name="light")
    chain = MCMC(State(Tree.from_newick(FIVE_TAXA)), MagicMock(),
                 [heavy, light], seed=3)

    picks = [chain.select_operator().name for _ in range(5000)]
    assert picks.count("heavy") / 5000 == pytest.approx(0.9, abs=0.03)


def test_calibrated_chain():
    """
    Every state the chain visits must keep both calibrated clades
    monophyletic: anything else has zero posterior and is never accepted.
    """
    out = io.StringIO()
    chain = calibrated_chain(trace=None)
    trace = TraceLogger("trace", [chain.posterior, chain.posterior.components[0],
                                  chain.state], stream=out)
    chain.trace = trace

    state = chain.run()
    tree = state.tree

    assert tree.is_valid()
    for names in [["A", "B"], ["A", "B", "C"]]:
        node = tree.common_ancestor_of(tree.taxon_index(n) for n in names)
        assert tree.leaf_count(node) == len(names)

    total = sum(op.accepted + op.rejected for op in chain.operators)
    assert total == 3000
    assert math.isfinite(chain.current_log_p)
    assert chain.current_log_p == pytest.approx(
        chain.posterior.calculate_log_p())

    rows = out.getvalue().strip().split("\n")
    assert rows[0].split("\t") == ["Sample", "posterior", "CalibratedYule",
                                   "A,B", "A,B,C", "birthRate"]
    # start plus every 500th sample
    assert len(rows) == 1 + 1 + 6
    assert rows[-1].split("\t")[0] == "3000"


def test_same_seed_same_chain():
    first = calibrated_chain(500, 100).run()
    second = calibrated_chain(500, 100).run()
    assert np.array_equal(first.tree.heights, second.tree.heights)
    assert np.array_equal(first.tree.parent, second.tree.parent)
