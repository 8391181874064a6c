#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyCalPy --
##  Library for Calibrated Phylogenetic Tree Priors and their MCMC Samplers
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##
##  See "LICENSE.txt" for terms and conditions of usage.
##
##  If you use this work or any portion thereof in published work,
##  please cite it as:
##
##     Mark Kessler, Luay Nakhleh. 2025.
##
##############################################################################

"""
Configuration objects for an analysis, and the builder that turns one into a
ready-to-run chain.

A configuration is a plain dict (or a JSON file holding one):

    {
        "tree": "((A:1,B:1):1,C:2);",
        "birth_rate": {"value": 1.0, "prior": {"name": "expon"}},
        "calibrations": [
            {"taxa": ["A", "B"],
             "distribution": {"name": "uniform", "args": [0.5, 2.0]}}
        ],
        "correction_type": "all",
        "operators": [{"type": "scale", "weight": 1.0}],
        "chain_length": 100000
    }

Distributions are named after their scipy.stats counterpart; "args" and
"kwargs" are passed on when freezing them.

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

from __future__ import annotations
import json
import math
from dataclasses import dataclass, field, fields
from typing import Any, Optional, TYPE_CHECKING

import scipy.stats

from .CalibratedYule import CalibratedYuleModel, CorrectionType
from .Calibration import CalibrationError, CalibrationPoint
from .Distribution import CompoundDistribution, Distribution, ParameterPrior
from .Logger import TraceLogger, logger
from .MCMCSettings import AUTO_OPTIMIZE_DELAY, CHAIN_LENGTH, \
                          DEFAULT_TARGET_ACCEPTANCE, LOG_EVERY, SEED
from .MetropolisHastings import MCMC
from .Operator import Operator, OperatorError, OptimizationSchedule
from .State import RealParameter, State, StateError
from .Tree import Tree, TreeBuilder, TreeError
from .TreeOperators import NarrowExchangeOperator, RandomWalkOperator, \
                           ScaleOperator, TreeScaleOperator, UniformOperator
if TYPE_CHECKING:
    from scipy.stats._distn_infrastructure import rv_frozen

#########################
#### EXCEPTION CLASS ####
#########################

class BuildError(Exception):
    """
    Raised when a configuration cannot be turned into a model: unknown keys,
    unknown operator types or distributions, or missing required values.
    """

    def __init__(self,
                 message : str = "Invalid analysis configuration",
                 phase : str | None = None) -> None:
        """
        Args:
            message (str, optional): Error message. Defaults to "Invalid
                                     analysis configuration".
            phase (str | None, optional): Build step that failed, prefixed to
                                          the message. Defaults to None.
        Returns:
            N/A
        """
        if phase:
            message = f"[{phase}] {message}"
        self.message = message
        self.phase = phase
        super().__init__(self.message)

##########################
#### HELPER FUNCTIONS ####
##########################

def _check_keys(cls : type, data : dict[str, Any], where : str) -> None:
    if not isinstance(data, dict):
        raise BuildError(f"{where} must be a mapping, got \
                           {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise BuildError(f"Unknown key(s) in {where}: {', '.join(unknown)}")

#################################
#### CONFIGURATION OBJECTS ######
#################################

@dataclass
class DistributionConfig:
    """
    A scipy.stats distribution by name.

    Attributes:
        name: Name of a continuous distribution in scipy.stats, e.g. "lognorm"
        args: Positional shape/loc/scale arguments
        kwargs: Keyword arguments
    """
    name: str
    args: list = field(default_factory=list)
    kwargs: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data : dict[str, Any], where : str = "distribution") \
            -> DistributionConfig:
        _check_keys(cls, data, where)
        if "name" not in data:
            raise BuildError(f"{where} needs a 'name'")
        return cls(**data)

    def freeze(self) -> rv_frozen:
        """
        Raises:
            BuildError: If the name is not a continuous scipy.stats
                        distribution, or the arguments do not fit it.
        Returns:
            rv_frozen: The frozen distribution.
        """
        dist = getattr(scipy.stats, self.name, None)
        if not isinstance(dist, scipy.stats.rv_continuous):
            raise BuildError(f"Unknown distribution '{self.name}'")
        try:
            return dist(*self.args, **self.kwargs)
        except (TypeError, ValueError) as err:
            raise BuildError(f"Bad arguments for distribution \
                               '{self.name}': {err}") from err


@dataclass
class CalibrationConfig:
    """
    Attributes:
        taxa: Taxon names of the clade
        distribution: Age distribution of the clade (or of its parent)
        for_parent: Calibrate the parent of the clade's MRCA
        name: Column name in the trace
    """
    taxa: list[str]
    distribution: DistributionConfig
    for_parent: bool = False
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data : dict[str, Any]) -> CalibrationConfig:
        _check_keys(cls, data, "calibration")
        if "taxa" not in data or "distribution" not in data:
            raise BuildError("A calibration needs 'taxa' and a 'distribution'")
        values = dict(data)
        values["distribution"] = DistributionConfig.from_dict(
                                    data["distribution"],
                                    f"distribution of calibration {data['taxa']}")
        return cls(**values)

    def build(self) -> CalibrationPoint:
        return CalibrationPoint(self.taxa, self.distribution.freeze(),
                                self.for_parent, self.name)


@dataclass
class OperatorConfig:
    """
    Attributes:
        type: One of OPERATOR_TYPES
        weight: Relative selection weight, required
        parameter: Parameter a "scale" operator acts on
        scale_factor: Starting scale factor of scaling operators
        window: Starting window of random walk operators
        target_acceptance: Acceptance rate tuning aims for
        name: Name in the operator report
    """
    type: str
    weight: Optional[float] = None
    parameter: str = "birthRate"
    scale_factor: float = 0.75
    window: float = 1.0
    target_acceptance: float = DEFAULT_TARGET_ACCEPTANCE
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data : dict[str, Any]) -> OperatorConfig:
        _check_keys(cls, data, "operator")
        if "type" not in data:
            raise BuildError("An operator needs a 'type'")
        return cls(**data)


@dataclass
class BirthRateConfig:
    """
    Attributes:
        value: Starting birth rate
        lower: Lower bound
        upper: Upper bound
        prior: Optional prior on the birth rate
    """
    value: float = 1.0
    lower: float = 0.0
    upper: float = math.inf
    prior: Optional[DistributionConfig] = None

    @classmethod
    def from_dict(cls, data : dict[str, Any]) -> BirthRateConfig:
        _check_keys(cls, data, "birth_rate")
        values = dict(data)
        if data.get("prior") is not None:
            values["prior"] = DistributionConfig.from_dict(data["prior"],
                                                           "birth rate prior")
        return cls(**values)


@dataclass
class AnalysisConfig:
    """
    Everything needed to run one chain.

    Attributes:
        tree: Newick string of the starting tree. Optional when taxa is given
        taxa: Taxon names, used when no tree is given
        birth_rate: Birth rate settings
        calibrations: Calibrated clades
        correction_type: "none", "all" or "counts"
        operators: Operators of the chain. Defaults to DEFAULT_OPERATORS
        start_from_calibrations: Replace the starting tree with one that
                                 satisfies every calibration
        chain_length: Number of proposals
        log_every: Trace interval
        seed: Random seed
        optimize_delay: Proposals before operator tuning starts
        trace_file: Trace output path. None disables the trace
    """
    tree: Optional[str] = None
    taxa: list[str] = field(default_factory=list)
    birth_rate: BirthRateConfig = field(default_factory=BirthRateConfig)
    calibrations: list[CalibrationConfig] = field(default_factory=list)
    correction_type: str = CorrectionType.OVER_ALL_TOPOS.value
    operators: list[OperatorConfig] = field(default_factory=list)
    start_from_calibrations: Optional[bool] = None
    chain_length: int = CHAIN_LENGTH
    log_every: int = LOG_EVERY
    seed: Optional[int] = SEED
    optimize_delay: int = AUTO_OPTIMIZE_DELAY
    trace_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data : dict[str, Any]) -> AnalysisConfig:
        """
        Raises:
            BuildError: On unknown keys or missing required values.
        Args:
            data (dict[str, Any]): Parsed configuration.
        Returns:
            AnalysisConfig: The configuration object.
        """
        _check_keys(cls, data, "analysis configuration")
        values = dict(data)
        if "birth_rate" in data:
            values["birth_rate"] = BirthRateConfig.from_dict(data["birth_rate"])
        values["calibrations"] = [CalibrationConfig.from_dict(c)
                                  for c in data.get("calibrations", [])]
        values["operators"] = [OperatorConfig.from_dict(o)
                               for o in data.get("operators", [])]

        config = cls(**values)
        if config.tree is None and not config.taxa:
            raise BuildError("The configuration needs a 'tree' or 'taxa'")
        return config

    @classmethod
    def from_json(cls, path : str) -> AnalysisConfig:
        """
        Args:
            path (str): Path to a JSON file.
        Returns:
            AnalysisConfig: The configuration object.
        """
        with open(path) as json_file:
            try:
                data = json.load(json_file)
            except json.JSONDecodeError as err:
                raise BuildError(f"Could not read configuration {path}: \
                                   {err}") from err
        return cls.from_dict(data)

##############################
#### MODEL BUILDER CLASS #####
##############################

OPERATOR_TYPES : dict[str, type] = {
    "scale" : ScaleOperator,
    "treeScale" : TreeScaleOperator,
    "uniform" : UniformOperator,
    "randomWalk" : RandomWalkOperator,
    "narrowExchange" : NarrowExchangeOperator
}

DEFAULT_OPERATORS : list[dict[str, Any]] = [
    {"type" : "scale", "weight" : 1.0},
    {"type" : "treeScale", "weight" : 1.0},
    {"type" : "uniform", "weight" : 10.0},
    {"type" : "randomWalk", "weight" : 3.0},
    {"type" : "narrowExchange", "weight" : 10.0}
]

BIRTH_RATE : str = "birthRate"


class ModelBuilder:
    """
    Builds the state, posterior, operators and sampler described by an
    AnalysisConfig. Each build step can also be called on its own.
    """

    def __init__(self, config : AnalysisConfig) -> None:
        self.config : AnalysisConfig = config
        self.schedule : OptimizationSchedule = \
            OptimizationSchedule(config.optimize_delay)

        self.state : State | None = None
        self.model : CalibratedYuleModel | None = None
        self.posterior : CompoundDistribution | None = None
        self.operators : list[Operator] = []

    def build_tree(self) -> Tree:
        """
        Returns:
            Tree: The configured starting tree, or a placeholder ladder tree
                  on the configured taxa.
        """
        if self.config.tree is not None:
            return Tree.from_newick(self.config.tree)

        builder = TreeBuilder(self.config.taxa)
        node = builder.leaf(0)
        for i in range(1, len(self.config.taxa)):
            node = builder.connect(node, builder.leaf(i), float(i))
        return builder.build()

    def build_state(self) -> State:
        rate = self.config.birth_rate
        birth_rate = RealParameter(rate.value, rate.lower, rate.upper,
                                   BIRTH_RATE)
        self.state = State(self.build_tree(), [birth_rate])
        return self.state

    def build_posterior(self) -> CompoundDistribution:
        """
        Raises:
            BuildError: If the correction type is unknown.
        Returns:
            CompoundDistribution: The calibrated Yule prior times the birth
                                  rate prior, if one is configured.
        """
        if self.state is None:
            self.build_state()

        try:
            correction = CorrectionType(self.config.correction_type)
        except ValueError as err:
            raise BuildError(f"Unknown correction type \
                               '{self.config.correction_type}'") from err

        birth_rate = self.state.get_parameter(BIRTH_RATE)
        calibrations = [cal.build() for cal in self.config.calibrations]
        self.model = CalibratedYuleModel(self.state.tree, birth_rate,
                                         calibrations, correction)

        start_fresh = self.config.start_from_calibrations
        if start_fresh is None:
            start_fresh = self.config.tree is None
        if start_fresh:
            self.state.tree.assign_from(self.model.compatible_initial_tree())
            logger.info(f"Starting tree built from calibrations: "
                        f"{self.state.tree.to_newick()}")

        components : list[Distribution] = [self.model]
        if self.config.birth_rate.prior is not None:
            components.append(ParameterPrior(birth_rate,
                                             self.config.birth_rate.prior.freeze()))
        self.posterior = CompoundDistribution(components, "posterior")
        return self.posterior

    def build_operator(self, op_config : OperatorConfig) -> Operator:
        """
        Raises:
            BuildError: If the type is unknown or the weight is missing.
        Args:
            op_config (OperatorConfig): One operator's settings.
        Returns:
            Operator: The operator, sharing the builder's schedule.
        """
        op_type = OPERATOR_TYPES.get(op_config.type)
        if op_type is None:
            raise BuildError(f"Unknown operator type '{op_config.type}', \
                               expected one of {sorted(OPERATOR_TYPES)}")
        if op_config.weight is None:
            raise BuildError(f"Operator '{op_config.name or op_config.type}' \
                               is missing its weight")

        common = {"weight" : op_config.weight, "schedule" : self.schedule}
        if op_config.name is not None:
            common["name"] = op_config.name

        if op_type is ScaleOperator:
            return ScaleOperator(op_config.parameter,
                                 scale_factor=op_config.scale_factor,
                                 target_acceptance=op_config.target_acceptance,
                                 **common)
        if op_type is TreeScaleOperator:
            return TreeScaleOperator(scale_factor=op_config.scale_factor,
                                     target_acceptance=op_config.target_acceptance,
                                     **common)
        if op_type is RandomWalkOperator:
            return RandomWalkOperator(window=op_config.window,
                                      target_acceptance=op_config.target_acceptance,
                                      **common)
        return op_type(**common)

    def build_operators(self) -> list[Operator]:
        op_configs = self.config.operators or \
                     [OperatorConfig.from_dict(o) for o in DEFAULT_OPERATORS]
        self.operators = [self.build_operator(o) for o in op_configs]
        return self.operators

    def build(self) -> MCMC:
        """
        Returns:
            MCMC: A chain ready to run.
        """
        steps = [("state", self.build_state),
                 ("posterior", self.build_posterior),
                 ("operators", self.build_operators)]
        for phase, step in steps:
            try:
                step()
            except BuildError:
                raise
            except (TreeError, CalibrationError, StateError,
                    OperatorError) as err:
                raise BuildError(str(err), phase=phase) from err

        trace = None
        if self.config.trace_file is not None:
            trace = TraceLogger("trace", [self.posterior, self.model,
                                          self.state],
                                self.config.trace_file)

        return MCMC(self.state, self.posterior, self.operators,
                    self.config.chain_length, self.config.log_every,
                    self.config.seed, trace)


def run_analysis(config : AnalysisConfig | dict[str, Any] | str) -> State:
    """
    Build and run one chain.

    Args:
        config (AnalysisConfig | dict[str, Any] | str): A configuration
                                                        object, a parsed
                                                        configuration, or a
                                                        path to a JSON file.
    Returns:
        State: The final state of the chain.
    """
    if isinstance(config, str):
        config = AnalysisConfig.from_json(config)
    elif isinstance(config, dict):
        config = AnalysisConfig.from_dict(config)
    return ModelBuilder(config).build().run()
