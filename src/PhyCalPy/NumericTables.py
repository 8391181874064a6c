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
Precomputed log-space combinatorial tables, and the stable log-sum-exp used
everywhere probabilities are added.

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

import math
import numpy as np

LOG_2 : float = math.log(2.0)

##########################
#### HELPER FUNCTIONS ####
##########################

def log_add(a : float, b : float) -> float:
    """
    Add two probabilities that are given in natural log space, without ever
    exponentiating either of them directly.

    log(exp(a) + exp(b)) = max + log1p(exp(min - max))

    Args:
        a (float): log of the first probability. May be -inf.
        b (float): log of the second probability. May be -inf.
    Returns:
        float: log of the sum of the two probabilities.
    """
    if a == -math.inf:
        return b
    if b == -math.inf:
        return a
    if a > b:
        return a + math.log1p(math.exp(b - a))
    return b + math.log1p(math.exp(a - b))

######################
#### TABLES CLASS ####
######################

class LogTables:
    """
    Log-space lookup tables sized to the largest number of lineages a
    computation can ever see (the number of taxa + 1).

    lints       -- lints[i] = log(i). lints[0] is -inf and should never be
                   used.
    lc2         -- lc2[i] = log(i choose 2), the log number of ways to pick
                   the pair that merges among i lineages. -inf for 0 and 1.
    lfactorials -- lfactorials[i] = log(i!)
    lnr         -- lnr[i] = lc2[2] + ... + lc2[i], the log number of ordered
                   merge sequences that reduce i lineages down to one.
                   lnr[1] = 0, lnr[0] = -inf.
    """

    def __init__(self, max_n : int) -> None:
        """
        Build all tables.

        Args:
            max_n (int): Length of each table. Index max_n - 1 is the largest
                         lineage count that may be looked up.
        Returns:
            N/A
        """
        if max_n < 2:
            raise ValueError(f"Tables need at least 2 entries, got {max_n}")

        self.max_n : int = max_n

        self.lints : np.ndarray = np.empty(max_n)
        self.lints[0] = -math.inf
        self.lints[1:] = np.log(np.arange(1, max_n, dtype=float))

        self.lc2 : np.ndarray = np.full(max_n, -math.inf)
        for i in range(2, max_n):
            self.lc2[i] = self.lints[i] + self.lints[i - 1] - LOG_2

        self.lfactorials : np.ndarray = np.zeros(max_n)
        for i in range(1, max_n):
            self.lfactorials[i] = self.lfactorials[i - 1] + self.lints[i]

        self.lnr : np.ndarray = np.zeros(max_n)
        self.lnr[0] = -math.inf
        for i in range(2, max_n):
            self.lnr[i] = self.lnr[i - 1] + self.lc2[i]
