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
Calibration points (a clade plus a target age distribution) and the builder
that arranges a set of them into their nesting order.

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

from __future__ import annotations
from typing import Iterable, Sequence, TYPE_CHECKING
if TYPE_CHECKING:
    from scipy.stats._distn_infrastructure import rv_frozen

#########################
#### EXCEPTION CLASS ####
#########################

class CalibrationError(Exception):
    """
    Raised for calibration configurations that cannot be evaluated: partially
    overlapping clades, duplicate clades, taxa missing from the tree, or
    correction types that are not available for the given calibrations.
    """

    def __init__(self, message : str = "Invalid calibration setup") -> None:
        """
        Initialize the exception with an error message.

        Args:
            message (str, optional): A custom error message. Defaults to
                                     "Invalid calibration setup".
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

###############################
#### CALIBRATION POINT ########
###############################

class CalibrationPoint:
    """
    A clade, given by its taxa, together with the distribution its age should
    follow. The age is that of the clade's MRCA, or of the MRCA's parent when
    for_parent is set.
    """

    def __init__(self,
                 taxa : Iterable[str],
                 distribution : rv_frozen,
                 for_parent : bool = False,
                 name : str | None = None) -> None:
        """
        Raises:
            CalibrationError: If the clade is empty, or holds a single taxon
                              without targeting its parent.
        Args:
            taxa (Iterable[str]): Taxon names that make up the clade.
            distribution (rv_frozen): A frozen scipy.stats distribution over
                                      ages, e.g. scipy.stats.lognorm(0.5).
            for_parent (bool, optional): Calibrate the parent of the MRCA
                                         instead of the MRCA. Defaults to
                                         False.
            name (str | None, optional): Identifier used in logs. Defaults to
                                         the comma joined, sorted taxa.
        Returns:
            N/A
        """
        self.taxa : frozenset[str] = frozenset(taxa)
        if len(self.taxa) == 0:
            raise CalibrationError("A calibration needs at least one taxon")
        if len(self.taxa) == 1 and not for_parent:
            raise CalibrationError(f"Calibration on the single taxon \
                                     {next(iter(self.taxa))} must target its \
                                     parent")

        self.distribution : rv_frozen = distribution
        self.for_parent : bool = for_parent
        self.name : str = name if name is not None \
                               else ",".join(sorted(self.taxa))

    def log_pdf(self, age : float) -> float:
        """
        Args:
            age (float): A node height.
        Returns:
            float: Log density of the calibration distribution at age.
        """
        return float(self.distribution.logpdf(age))

    def lower(self) -> float:
        """
        Returns:
            float: Lower end of the distribution's support (may be -inf).
        """
        return float(self.distribution.ppf(0.0))

    def upper(self) -> float:
        """
        Returns:
            float: Upper end of the distribution's support (may be inf).
        """
        return float(self.distribution.ppf(1.0))

    def __len__(self) -> int:
        return len(self.taxa)

    def __repr__(self) -> str:
        target = "parent of " if self.for_parent else ""
        return f"CalibrationPoint({self.name}: {target}MRCA of {len(self)} taxa)"

###############################
#### PARTIAL ORDER BUILDER ####
###############################

class CalibrationOrder:
    """
    The result of ordering a set of calibrations by clade inclusion.

    ordered       -- calibrations, smallest first. A clade never comes after
                     a clade that contains it.
    partial_order -- partial_order[k] lists the indices (into ordered) of the
                     clades immediately nested in clade k.
    containing    -- containing[k] is the index of the smallest clade that
                     strictly contains clade k, or -1 if there is none.
    maximal       -- maximal[k] is True when no clade contains clade k.
    """

    def __init__(self,
                 ordered : list[CalibrationPoint],
                 partial_order : list[list[int]],
                 containing : list[int]) -> None:
        self.ordered : list[CalibrationPoint] = ordered
        self.partial_order : list[list[int]] = partial_order
        self.containing : list[int] = containing

        self.maximal : list[bool] = [True] * len(ordered)
        for children in partial_order:
            for child in children:
                self.maximal[child] = False

    def __len__(self) -> int:
        return len(self.ordered)

    def is_nested_pair(self) -> bool:
        """
        Returns:
            bool: True if there are exactly two calibrations and the second
                  directly contains the first.
        """
        return len(self.ordered) == 2 and len(self.partial_order[1]) == 1


def is_maximal(taxa_sets : Sequence[frozenset[str]], k : int) -> bool:
    """
    Args:
        taxa_sets (Sequence[frozenset[str]]): Clades.
        k (int): Index of the clade to check.
    Returns:
        bool: True if no other clade in taxa_sets contains clade k.
    """
    tk = taxa_sets[k]
    return not any(i != k and tk <= other for i, other in enumerate(taxa_sets))


def validate_nesting(calibrations : Sequence[CalibrationPoint]) -> None:
    """
    Check that every pair of clades is either disjoint or strictly nested.

    Raises:
        CalibrationError: On the first pair of clades that partially overlap,
                          or that are identical.
    Args:
        calibrations (Sequence[CalibrationPoint]): Calibrations to check.
    Returns:
        N/A
    """
    for k, cal_k in enumerate(calibrations):
        for cal_i in calibrations[k + 1:]:
            tk, ti = cal_k.taxa, cal_i.taxa
            if tk == ti:
                raise CalibrationError(f"Calibrations '{cal_k.name}' and \
                                         '{cal_i.name}' are on the same clade")
            if tk & ti and not (tk < ti or ti < tk):
                raise CalibrationError(f"Overlapping calibration clades \
                                         '{cal_k.name}' and '{cal_i.name}' \
                                         must be disjoint or nested")


def order_calibrations(calibrations : Sequence[CalibrationPoint]) \
        -> CalibrationOrder:
    """
    Arrange calibrations by clade inclusion.

    Maximal clades are repeatedly pulled out of the remaining set and placed
    at the back of the ordering, which leaves the calibrations sorted from the
    most deeply nested to the largest. Each clade is then linked to the first
    later clade that contains it, which is its immediate parent.

    Raises:
        CalibrationError: If two clades partially overlap or coincide.
    Args:
        calibrations (Sequence[CalibrationPoint]): Calibrations in any order.
    Returns:
        CalibrationOrder: The ordering, immediate-children lists and
                          maximality flags.
    """
    validate_nesting(calibrations)

    remaining = list(calibrations)
    ordered : list[CalibrationPoint] = [None] * len(remaining) # type: ignore

    loc = len(remaining) - 1
    while loc >= 0:
        taxa_sets = [cal.taxa for cal in remaining]
        k = next(i for i in range(len(remaining)) if is_maximal(taxa_sets, i))
        ordered[loc] = remaining.pop(k)
        loc -= 1

    containing = [-1] * len(ordered)
    partial_order : list[list[int]] = [[] for _ in ordered]
    for k, cal_k in enumerate(ordered):
        for i in range(k + 1, len(ordered)):
            if cal_k.taxa < ordered[i].taxa:
                containing[k] = i
                partial_order[i].append(k)
                break

    return CalibrationOrder(ordered, partial_order, containing)
