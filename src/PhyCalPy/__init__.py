#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyCalPy --
##  Library for Calibrated Phylogenetic Tree Priors and their MCMC Samplers
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##############################################################################

"""
PhyCalPy - Calibrated Yule tree priors and a self-tuning Metropolis-Hastings
sampler for time-calibrated phylogenies.
"""

# Core data structures
from .Tree import Tree, TreeBuilder, TreeError
from .State import RealParameter, State, StateError

# Calibrations and the tree prior
from .Calibration import (
    CalibrationPoint,
    CalibrationOrder,
    CalibrationError,
    order_calibrations
)
from .NumericTables import LogTables, log_add
from .RankedLineages import RankedLineageIterator
from .CalibratedYule import (
    CalibratedYuleModel,
    CorrectionType,
    yule_log_likelihood,
    log_marginal_single,
    log_marginal_nested_pair,
    log_marginal_ranked,
    log_marginal_ranked_counts,
    count_ranked_trees
)
from .Distribution import Distribution, ParameterPrior, CompoundDistribution

# Sampling
from .Operator import Operator, OperatorError, OptimizationSchedule
from .TreeOperators import (
    ScalingOperator,
    ScaleOperator,
    TreeScaleOperator,
    UniformOperator,
    RandomWalkOperator,
    NarrowExchangeOperator
)
from .MetropolisHastings import MCMC, MetropolisHastingsException
from .Logger import TraceLogger

# Configuration
from .ModelBuilder import (
    AnalysisConfig,
    BirthRateConfig,
    CalibrationConfig,
    DistributionConfig,
    OperatorConfig,
    ModelBuilder,
    BuildError,
    run_analysis
)

__version__ = "1.0.0"
__author__ = "Mark Kessler"
