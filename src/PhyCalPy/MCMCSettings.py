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
Run-wide constants for the MCMC machinery.

Last Edit : 10/17/26
First Included in Version : 1.0.0
"""

import math

# A log Hastings ratio signalling an invalid proposal (always rejected).
INVALID_MOVE : float = -math.inf

# A log Hastings ratio signalling a Gibbs move (always accepted).
GIBBS_MOVE : float = math.inf

# Number of adaptable proposals, across all operators of a chain, that must
# complete before any operator starts tuning itself.
AUTO_OPTIMIZE_DELAY : int = 10000

# Optimal-scaling acceptance target for random-walk style proposals.
DEFAULT_TARGET_ACCEPTANCE : float = 0.234

# Operator report layout.
OPERATOR_NAME_WIDTH : int = 70
TUNING_VALUE_WIDTH : int = 5

# Sampler defaults.
CHAIN_LENGTH : int = 1000000
LOG_EVERY : int = 1000
SEED : int = 12345678
