import json
import math

import pytest
import scipy.stats

from PhyCalPy.ModelBuilder import *
from PhyCalPy.Tree import Tree
from PhyCalPy.CalibratedYule import CorrectionType
from PhyCalPy.MetropolisHastings import MCMC
from PhyCalPy.TreeOperators import NarrowExchangeOperator, ScaleOperator, \
                                   TreeScaleOperator


################
### HELPERS ####
################

def base_config(**overrides) -> dict:
    config = {
        "tree": "(((A:1,B:1):1,C:2):2,(D:3,E:3):1);",
        "birth_rate": {"value": 1.0,
                       "prior": {"name": "expon"}},
        "calibrations": [
            {"taxa": ["A", "B"],
             "distribution": {"name": "uniform", "args": [0.5, 1.5]}},
            {"taxa": ["A", "B", "C"],
             "distribution": {"name": "norm", "kwargs": {"loc": 2.0,
                                                         "scale": 0.5}},
             "name": "ingroup"}
        ],
        "operators": [{"type": "scale", "weight": 1.0, "scale_factor": 0.5},
                      {"type": "uniform", "weight": 3.0},
                      {"type": "narrowExchange", "weight": 3.0}],
        "chain_length": 200,
        "log_every": 50,
        "seed": 4
    }
    config.update(overrides)
    return config

################
#### TESTS #####
################

def test_from_dict():
    config = AnalysisConfig.from_dict(base_config())
    assert config.birth_rate.prior.name == "expon"
    assert config.calibrations[1].name == "ingroup"
    assert config.calibrations[1].distribution.kwargs == {"loc": 2.0,
                                                          "scale": 0.5}
    assert config.operators[0].scale_factor == 0.5
    assert config.correction_type == "all"
    assert config.trace_file is None


def test_build():
    builder = ModelBuilder(AnalysisConfig.from_dict(base_config()))
    chain = builder.build()

    assert isinstance(chain, MCMC)
    assert chain.chain_length == 200
    assert builder.model.correction_type == CorrectionType.OVER_ALL_TOPOS
    assert builder.model.strategy == "nested-pair"
    assert [c.name for c in builder.posterior.components] == \
        ["CalibratedYule", "birthRate.prior"]

    scale, uniform, exchange = builder.operators
    assert isinstance(scale, ScaleOperator)
    assert scale.scale_factor == 0.5
    assert isinstance(exchange, NarrowExchangeOperator)
    assert scale.schedule is uniform.schedule is exchange.schedule

    # the given tree already satisfies both calibrations
    assert builder.state.tree.to_newick() == \
        Tree.from_newick(base_config()["tree"]).to_newick()
    assert math.isfinite(builder.posterior.calculate_log_p())


def test_default_operators():
    builder = ModelBuilder(AnalysisConfig.from_dict(base_config(operators=[])))
    builder.build()
    types = [type(op) for op in builder.operators]
    assert types == [OPERATOR_TYPES[o["type"]] for o in DEFAULT_OPERATORS]
    assert isinstance(builder.operators[1], TreeScaleOperator)


def test_start_from_taxa():
    """
    Without a tree, the starting tree is built from the calibrations and
    must already have a finite posterior.
    """
    config = base_config(tree=None, taxa=["A", "B", "C", "D", "E"])
    builder = ModelBuilder(AnalysisConfig.from_dict(config))
    builder.build()

    tree = builder.state.tree
    assert sorted(tree.get_taxa()) == ["A", "B", "C", "D", "E"]
    assert math.isfinite(builder.posterior.calculate_log_p())


def test_missing_tree_and_taxa():
    with pytest.raises(BuildError):
        AnalysisConfig.from_dict(base_config(tree=None))


def test_unknown_keys():
    with pytest.raises(BuildError) as err:
        AnalysisConfig.from_dict(base_config(iterations=10))
    assert "iterations" in str(err.value)

    with pytest.raises(BuildError):
        AnalysisConfig.from_dict(base_config(
            operators=[{"type": "scale", "weight": 1.0, "size": 2}]))


def test_operator_errors():
    config = AnalysisConfig.from_dict(base_config(
        operators=[{"type": "scale"}]))
    with pytest.raises(BuildError) as err:
        ModelBuilder(config).build()
    assert "weight" in str(err.value)

    config = AnalysisConfig.from_dict(base_config(
        operators=[{"type": "wilsonBalding", "weight": 1.0}]))
    with pytest.raises(BuildError):
        ModelBuilder(config).build()

    config = AnalysisConfig.from_dict(base_config(
        operators=[{"type": "scale", "weight": 1.0, "scale_factor": 2.0}]))
    with pytest.raises(BuildError) as err:
        ModelBuilder(config).build()
    assert err.value.phase == "operators"


def test_distribution_errors():
    with pytest.raises(BuildError):
        DistributionConfig("not_a_distribution").freeze()
    with pytest.raises(BuildError):
        DistributionConfig("binom", [5, 0.5]).freeze()
    with pytest.raises(BuildError):
        DistributionConfig("norm", kwargs={"mean": 1.0}).freeze()
    assert DistributionConfig("lognorm", [0.5]).freeze().logpdf(1.0) == \
        pytest.approx(scipy.stats.lognorm(0.5).logpdf(1.0))


def test_unknown_correction():
    config = AnalysisConfig.from_dict(base_config(correction_type="most"))
    with pytest.raises(BuildError):
        ModelBuilder(config).build()


def test_overlapping_calibrations():
    cals = [{"taxa": ["A", "B"], "distribution": {"name": "expon"}},
            {"taxa": ["B", "C"], "distribution": {"name": "expon"}}]
    config = AnalysisConfig.from_dict(base_config(calibrations=cals))
    with pytest.raises(BuildError) as err:
        ModelBuilder(config).build()
    assert err.value.phase == "posterior"
    assert str(err.value).startswith("[posterior]")


def test_bad_newick():
    config = AnalysisConfig.from_dict(base_config(tree="((A:1,B:1):1,A:2);"))
    with pytest.raises(BuildError) as err:
        ModelBuilder(config).build()
    assert err.value.phase == "state"


def test_run_analysis(tmp_path):
    trace_file = tmp_path / "chain.log"
    config_file = tmp_path / "analysis.json"
    config_file.write_text(json.dumps(
        base_config(trace_file=str(trace_file))))

    state = run_analysis(str(config_file))
    assert state.tree.is_valid()
    assert state.get_parameter("birthRate").get_value() > 0

    rows = trace_file.read_text().strip().split("\n")
    assert rows[0].split("\t") == ["Sample", "posterior", "CalibratedYule",
                                   "A,B", "ingroup", "birthRate"]
    assert [r.split("\t")[0] for r in rows[1:]] == \
        ["0", "50", "100", "150", "200"]


def test_bad_json(tmp_path):
    config_file = tmp_path / "broken.json"
    config_file.write_text("{\"tree\": ")
    with pytest.raises(BuildError):
        AnalysisConfig.from_json(str(config_file))
