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
Yule tree prior with calibrated monophyletic clades. The marginal density of
every calibrated node height is exactly the calibration density; the Yule
process is only preserved within the sub-spaces that share the calibrated
heights.

Last Edit : 10/17/26
First Included in Version : 1.0.0

Docs   - [x]
Tests  - [x]
Design - [x]

SOURCES:

1) Heled J, Drummond AJ. Calibrated Tree Priors for Relaxed Phylogenetics
   and Divergence Time Estimation. Syst Biol (2012) 61 (1): 138-149.
   https://doi.org/10.1093/sysbio/syr087
"""

from __future__ import annotations
import math
from bisect import bisect_left
from enum import Enum
from typing import Callable, Sequence, Union

import numpy as np

from .Calibration import CalibrationError, CalibrationOrder, \
                         CalibrationPoint, order_calibrations
from .Distribution import Distribution
from .Logger import log_calibration_order, log_correction_strategy
from .NumericTables import LogTables, log_add
from .RankedLineages import RankedLineageIterator
from .State import RealParameter
from .Tree import Tree, TreeBuilder

#####################
#### ENUMERATION ####
#####################

class CorrectionType(Enum):
    """
    How the Yule density is corrected for the calibrations.

    NONE               -- no correction, calibration densities are simply
                          multiplied in.
    OVER_ALL_TOPOS     -- exact marginal over all topologies and rankings.
    OVER_RANKED_COUNTS -- per-interval closed form over ranked node counts.
    """
    NONE = "none"
    OVER_ALL_TOPOS = "all"
    OVER_RANKED_COUNTS = "counts"

    def __str__(self) -> str:
        return self.value

#################################
#### YULE AND CLOSED FORMS ######
#################################

def yule_log_likelihood(tree : Tree, lam : float) -> float:
    """
    Unnormalised log density of a ranked tree under a Yule process.

    The root height is counted twice: together with the other internal
    heights this is the total branch length of the tree, and the closed form
    corrections below are derived against exactly this expression.

    Args:
        tree (Tree): A tree.
        lam (float): Birth rate.
    Returns:
        float: (n - 1) log(lam) - lam * (sum of internal heights + root height)
    """
    n_taxa = tree.get_leaf_node_count()
    internal = tree.heights[n_taxa:]
    log_l = (n_taxa - 1) * math.log(lam)
    log_l -= lam * float(np.sum(internal))
    log_l -= lam * tree.get_height(tree.root)
    return log_l


def _log_factorial(i : int) -> float:
    return math.lgamma(i + 1)


def log_marginal_single(lam : float,
                        n_taxa : int,
                        height : float,
                        n_clade : int,
                        for_parent : bool) -> float:
    """
    Log marginal density of a single calibrated height: the Yule density
    integrated over every other node height and summed over every ranked
    labelled history in which the clade is monophyletic.

    With N = n_taxa - n_clade taxa outside the clade and x = 1 - exp(-lam h),
    the marginal of the clade MRCA is

        lam exp(-3 lam h) x^(k-2) k! (k-1) N! / 2^(n-1)

    (exp(-2 lam h) for a calibrated root), and that of the MRCA's parent is

        lam exp(-2 lam h) x^(k-1) k! N! / 2^(n-2).

    Args:
        lam (float): Birth rate.
        n_taxa (int): Number of taxa in the tree.
        height (float): Calibrated node height.
        n_clade (int): Number of taxa in the calibrated clade.
        for_parent (bool): Whether the calibrated node is the clade MRCA's
                           parent.
    Returns:
        float: The log marginal.
    """
    lh = lam * height
    n_out = n_taxa - n_clade
    lgp = math.log(lam) + _log_factorial(n_clade) + _log_factorial(n_out)

    if for_parent:
        lgp += -2 * lh - (n_taxa - 2) * math.log(2)
        if n_clade > 1:
            lgp += (n_clade - 1) * math.log(-math.expm1(-lh))
        return lgp

    lgp += -3 * lh + (n_clade - 2) * math.log(-math.expm1(-lh))
    lgp += math.log(n_clade - 1) - (n_taxa - 1) * math.log(2)
    if n_out == 0:
        # calibrated root
        lgp += lh
    return lgp


def log_marginal_nested_pair(lam : float,
                             n_taxa : int,
                             h_inner : float,
                             n_inner : int,
                             h_outer : float,
                             n_outer : int) -> float:
    """
    Log marginal density of two calibrated heights where the outer clade
    directly contains the inner one.

    With m = n_outer - n_inner, N = n_taxa - n_outer, e_i = exp(-lam h_i)
    and the polynomial P(e_inner, e_outer) below, the marginal is

        lam^2 exp(-lam (h_inner + 3 h_outer)) (1 - e_inner)^(a-2)
            (1 - e_outer)^(m-3) P a! (a-1) m! N! / 2^(n-2)

    with 2 h_outer in place of 3 h_outer when the outer clade is the root.

    Args:
        lam (float): Birth rate.
        n_taxa (int): Number of taxa in the tree.
        h_inner (float): Height of the inner clade's MRCA.
        n_inner (int): Size of the inner clade.
        h_outer (float): Height of the outer clade's MRCA.
        n_outer (int): Size of the outer clade.
    Returns:
        float: The log marginal.
    """
    m = n_outer - n_inner
    n_out = n_taxa - n_outer

    e_inner = math.exp(-lam * h_inner)
    e_outer = math.exp(-lam * h_outer)

    lgl = 2 * math.log(lam)
    lgl += (n_inner - 2) * math.log(1 - e_inner)
    lgl += (m - 3) * math.log(1 - e_outer)

    lgl += math.log(1 - 2 * m * e_outer + 2 * (m - 1) * e_inner
                    - m * (m - 1) * e_outer * e_inner
                    + (m * (m + 1) / 2.) * e_outer * e_outer
                    + ((m - 1) * (m - 2) / 2.) * e_inner * e_inner)

    lgl += _log_factorial(n_inner) + math.log(n_inner - 1)
    lgl += _log_factorial(m) + _log_factorial(n_out)
    lgl -= (n_taxa - 2) * math.log(2)

    if n_out > 0:
        lgl -= lam * (h_inner + 3 * h_outer)
    else:
        lgl -= lam * (h_inner + 2 * h_outer)
    return lgl

########################################
#### GENERAL CASE: RANKED LINEAGES #####
########################################

def count_ranked_trees(lins : np.ndarray,
                       lineages : RankedLineageIterator,
                       tables : LogTables) -> tuple[float, np.ndarray]:
    """
    Log number of ranked merge orders consistent with one lineage-count
    history, with the orderings of the free merges inside each level
    divided out (they are integrated over, not counted).

    A group that goes from a to x lineages inside a level picks its merging
    pairs in C(a,2) C(a-1,2) ... C(x+1,2) ways, over m = a - x merges whose
    relative order against the other groups is free.

    Args:
        lins (np.ndarray): A history produced by the iterator.
        lineages (RankedLineageIterator): The iterator, already set up.
        tables (LogTables): Lookup tables.
    Returns:
        tuple[float, np.ndarray]: The log count, and the number of free
                                  merges in each level.
    """
    joiners = lineages.all_joiners()
    merges = np.zeros(lineages.n_levels, dtype=np.int64)
    log_count = 0.0

    for group in range(lineages.n_groups):
        present = lineages.n_start(group)
        for level in range(lineages.final_level(group) + 1):
            crossing = int(lins[level, group])
            n_merges = present - crossing
            if n_merges > 0:
                log_count += tables.lnr[present] - tables.lnr[crossing] \
                             - tables.lfactorials[n_merges]
                merges[level] += n_merges
            present = crossing + int(joiners[level, group])

    return log_count, merges


def _log_interval_mass(upper : float, lower : float) -> float:
    """
    log(exp(upper) - exp(lower)) for upper >= lower, -inf for an empty
    interval.
    """
    if lower >= upper:
        return -math.inf
    return upper + math.log1p(-math.exp(lower - upper))


def log_marginal_ranked(lam : float,
                        heights : Sequence[float],
                        ranks : Sequence[int],
                        lineages : RankedLineageIterator,
                        tables : LogTables) -> float:
    """
    Exact log marginal density of the calibrated heights: the Yule density
    integrated over every free node height and summed over every topology in
    which each calibrated clade is monophyletic.

    A free node at height t contributes lam * exp(-lam t). Integrating m
    ordered nodes over the level (h_lo, h_hi] gives
    (exp(-lam h_lo) - exp(-lam h_hi))^m / m!, which count_ranked_trees
    combines with the merge-order counts. In the unbounded root level the
    root carries the extra exp(-lam t) of the Yule density, which turns the
    L - 1 merges of L lineages into exp(-lam h_top)^L / L!.

    Args:
        lam (float): Birth rate.
        heights (Sequence[float]): Calibrated heights, sorted ascending.
        ranks (Sequence[int]): ranks[k] is the position of clade k's height
                               in heights.
        lineages (RankedLineageIterator): Enumerator for the clades.
        tables (LogTables): Lookup tables.
    Returns:
        float: The log marginal.
    """
    lineages.setup(ranks)

    n_heights = len(heights)
    lehs = np.empty(n_heights + 1)
    lehs[0] = 0.0
    lehs[1:] = -lam * np.asarray(heights, dtype=float)

    n_levels = lineages.n_levels
    lebase = np.empty(n_levels)
    for i in range(n_heights):
        lebase[i] = _log_interval_mass(lehs[i], lehs[i + 1])
    if lineages.has_root_group:
        lebase[n_heights] = lehs[n_heights]

    joiners = lineages.all_joiners()
    root = lineages.n_groups - 1
    top = n_levels - 1

    value = -math.inf
    for lins in lineages:
        v, merges = count_ranked_trees(lins, lineages, tables)
        for level in range(n_levels):
            if merges[level] > 0:
                v += merges[level] * lebase[level]

        if lineages.has_root_group:
            arriving = int(lins[top - 1, root] + joiners[top - 1, root])
            v += lebase[top] - tables.lints[arriving]

        value = log_add(value, v)

    # lam * exp(-lam h) for every calibrated node
    value += n_heights * math.log(lam) + float(np.sum(lehs[1:]))
    if not lineages.has_root_group:
        # a calibrated root is counted twice
        value += lehs[n_heights]
    return value

#################################
#### RANKED COUNTS CORRECTION ###
#################################

def _count_term(count : int, log_value : float) -> float:
    return 0.0 if count == 0 else count * log_value


def log_marginal_ranked_counts(lam : float,
                               tree : Tree,
                               heights : Sequence[float],
                               tables : LogTables) -> float:
    """
    Cheaper alternative to the exact marginal: counts the internal nodes that
    fall strictly between consecutive calibrated heights and applies a
    closed form per interval.

    Args:
        lam (float): Birth rate.
        tree (Tree): The tree whose nodes are counted.
        heights (Sequence[float]): Calibrated heights, any order.
        tables (LogTables): Lookup tables.
    Returns:
        float: The log correction.
    """
    hs = sorted(heights)
    n_cals = len(hs)
    counts = [0] * (n_cals + 1)

    for node in tree.get_internal_nodes():
        height = tree.get_height(node)
        i = bisect_left(hs, height)
        if i == n_cals or height < hs[i]:
            counts[i] += 1

    lf = tables.lfactorials
    ll = _count_term(counts[0], _log_interval_mass(0.0, -lam * hs[0]))
    ll += -lam * hs[0] - lf[counts[0]]
    for i in range(1, n_cals):
        c = counts[i]
        ll += _count_term(c, _log_interval_mass(0.0, -lam * (hs[i] - hs[i - 1]))
                          - lam * hs[i - 1])
        ll += -lam * hs[i] - lf[c]
    ll += -lam * (counts[n_cals] + 1) * hs[n_cals - 1] - lf[counts[n_cals] + 1]
    ll += math.log(lam) * n_cals
    return ll

##############################
#### CALIBRATED YULE MODEL ###
##############################

class CalibratedYuleModel(Distribution):
    """
    Tree prior: Yule density times every calibration density, divided by the
    marginal density the Yule process alone gives the calibrated heights.
    """

    def __init__(self,
                 tree : Tree,
                 birth_rate : Union[RealParameter, float],
                 calibrations : Sequence[CalibrationPoint] = (),
                 correction_type : Union[CorrectionType, str]
                                    = CorrectionType.OVER_ALL_TOPOS,
                 log_marginal : Union[float, Callable[[], float], None] = None,
                 name : str = "CalibratedYule") -> None:
        """
        Raises:
            CalibrationError: If clades overlap, a taxon is not in the tree,
                              the correction type is unknown, or the
                              correction type is not available for these
                              calibrations.
        Args:
            tree (Tree): The tree being sampled. Only ever read.
            birth_rate (RealParameter | float): Yule birth rate.
            calibrations (Sequence[CalibrationPoint], optional): Calibrated
                                    clades. Defaults to none.
            correction_type (CorrectionType | str, optional): Correction to
                                    apply. Defaults to OVER_ALL_TOPOS ("all").
            log_marginal (float | Callable[[], float] | None, optional): A
                                    user supplied log marginal, used verbatim
                                    instead of any internal correction.
                                    Defaults to None.
            name (str, optional): Id used in trace logs. Defaults to
                                  "CalibratedYule".
        Returns:
            N/A
        """
        super().__init__(name)

        self.tree : Tree = tree
        self.birth_rate : Union[RealParameter, float] = birth_rate
        self.user_marginal = log_marginal

        try:
            self.correction_type : CorrectionType = \
                CorrectionType(correction_type)
        except ValueError as err:
            raise CalibrationError(f"Unknown correction type \
                                     '{correction_type}'") from err

        self.order : CalibrationOrder = order_calibrations(list(calibrations))
        self.clades : list[list[int]] = [self._clade_indices(cal)
                                         for cal in self.order.ordered]

        self.tables : LogTables | None = None
        self.lineages : RankedLineageIterator | None = None

        # one-entry memo for the general case
        self.last_rate : float = -math.inf
        self.last_heights : tuple[float, ...] | None = None
        self.last_value : float = -math.inf

        self.strategy : str = self._select_strategy()

        log_calibration_order(self.order)
        log_correction_strategy(self.name, str(self.correction_type),
                                self.strategy)

    ###############
    #### SETUP ####
    ###############

    def _clade_indices(self, cal : CalibrationPoint) -> list[int]:
        indices = []
        for taxon in sorted(cal.taxa):
            index = self.tree.taxon_index(taxon)
            if index < 0:
                raise CalibrationError(f"Taxon not found in tree: {taxon} \
                                         (calibration '{cal.name}')")
            indices.append(index)
        return indices

    def _setup_tables(self) -> None:
        self.tables = LogTables(self.tree.get_leaf_node_count() + 1)

    def _select_strategy(self) -> str:
        """
        Decide, once, which correction formula applies, and build whatever
        tables it needs.
        """
        n_cals = len(self.order)
        if n_cals == 0 or self.correction_type == CorrectionType.NONE:
            return "none"
        if self.user_marginal is not None:
            return "user"

        if self.correction_type == CorrectionType.OVER_RANKED_COUNTS:
            self._setup_tables()
            return "ranked-counts"

        if n_cals == 1:
            return "single"

        parents = [cal.name for cal in self.order.ordered if cal.for_parent]
        if parents:
            raise CalibrationError(f"Correction type 'all' is not implemented \
                                     for a calibration on a parent when there \
                                     is more than one calibration: \
                                     {', '.join(parents)}")

        if self.order.is_nested_pair():
            return "nested-pair"

        self._setup_tables()
        self.lineages = RankedLineageIterator(self.clades,
                                              self.order.partial_order,
                                              self.order.maximal,
                                              self.tree.get_leaf_node_count())
        return "ranked-lineages"

    ######################
    #### EVALUATION ######
    ######################

    def rate(self) -> float:
        """
        Returns:
            float: Current birth rate.
        """
        if isinstance(self.birth_rate, RealParameter):
            return self.birth_rate.get_value()
        return float(self.birth_rate)

    def calculate_log_p(self) -> float:
        """
        Evaluate the prior on the current tree and birth rate.

        Returns:
            float: Log density, -inf if a calibrated clade is not monophyletic
                   or a height is outside a calibration's support.
        """
        self.current_log_p = self.calculate_tree_log_likelihood(self.tree,
                                                                self.rate())
        return self.current_log_p

    def calculate_tree_log_likelihood(self, tree : Tree, lam : float) -> float:
        """
        Args:
            tree (Tree): A tree on the model's taxa, same leaf numbering.
            lam (float): Birth rate.
        Returns:
            float: Yule log density plus the calibration correction.
        """
        if not lam > 0:
            return -math.inf
        return yule_log_likelihood(tree, lam) + self.get_correction(tree, lam)

    def calibrated_node(self, tree : Tree, k : int) -> int:
        """
        Node whose height calibration k applies to.

        Args:
            tree (Tree): A tree.
            k (int): Index into the ordered calibrations.
        Returns:
            int: The node index, or -1 if the clade is not monophyletic or the
                 calibration asks for the parent of the root.
        """
        taxa = self.clades[k]
        if len(taxa) > 1:
            node = tree.common_ancestor_of(taxa)
            if tree.leaf_count(node) != len(taxa):
                return -1
        else:
            node = taxa[0]

        if self.order.ordered[k].for_parent:
            node = tree.get_parent(node)
        return node

    def get_correction(self, tree : Tree, lam : float) -> float:
        """
        Calibration densities minus the log marginal of the calibrated
        heights.

        Args:
            tree (Tree): A tree.
            lam (float): Birth rate.
        Returns:
            float: The correction term added to the Yule log density.
        """
        log_l = 0.0
        heights = []

        for k, cal in enumerate(self.order.ordered):
            node = self.calibrated_node(tree, k)
            if node < 0:
                return -math.inf
            height = tree.get_height(node)
            log_l += cal.log_pdf(height)
            heights.append(height)

        if math.isinf(log_l):
            # some calibrated height is out of range
            return log_l

        if self.strategy == "none":
            return log_l
        return log_l - self._log_marginal(tree, lam, heights)

    def _log_marginal(self,
                      tree : Tree,
                      lam : float,
                      heights : list[float]) -> float:
        """
        Dispatch to the correction formula chosen at setup.
        """
        if self.strategy == "user":
            value = self.user_marginal() if callable(self.user_marginal) \
                    else float(self.user_marginal)
            if math.isnan(value) or math.isinf(value):
                # subtracting inf makes the whole evaluation -inf
                return math.inf
            return value

        n_taxa = tree.get_leaf_node_count()

        if self.strategy == "single":
            return log_marginal_single(lam, n_taxa, heights[0],
                                       len(self.clades[0]),
                                       self.order.ordered[0].for_parent)

        if self.strategy == "nested-pair":
            return log_marginal_nested_pair(lam, n_taxa,
                                            heights[0], len(self.clades[0]),
                                            heights[1], len(self.clades[1]))

        if self.strategy == "ranked-counts":
            return log_marginal_ranked_counts(lam, tree, heights, self.tables)

        return self._general_marginal(lam, heights)

    def _general_marginal(self, lam : float, heights : list[float]) -> float:
        """
        Exact marginal over ranked lineage histories, memoised on the last
        (rate, heights) pair.
        """
        key = tuple(heights)
        if lam == self.last_rate and key == self.last_heights:
            return self.last_value

        order = np.argsort(np.asarray(heights), kind="stable")
        ranks = [0] * len(heights)
        for rank, k in enumerate(order):
            ranks[int(k)] = rank
        sorted_heights = [heights[int(k)] for k in order]

        value = log_marginal_ranked(lam, sorted_heights, ranks,
                                    self.lineages, self.tables)

        self.last_rate = lam
        self.last_heights = key
        self.last_value = value
        return value

    ###########################
    #### INITIAL TREE #########
    ###########################

    def compatible_initial_tree(self) -> Tree:
        """
        Build a starting tree in which every calibrated clade is monophyletic
        and sits inside its calibration's range where the bounds allow.

        Each clade's target height is the middle of its distribution's lower
        and upper bound (lower bounds clamped at 0 and raised to those of
        nested clades, an infinite upper bound replaced by lower + 1), and is
        never above the target of a containing clade. A clade's free taxa and
        nested subtrees are chained together at evenly spaced heights from
        the tallest component up to the target. Maximal clades and remaining
        taxa are then joined one unit apart above the largest clade. Leaf
        numbering matches the model's tree.

        Returns:
            Tree: The new tree.
        """
        ordered = self.order.ordered
        children = self.order.partial_order
        n_cals = len(ordered)

        low = [0.0] * n_cals
        target = [0.0] * n_cals
        for k, cal in enumerate(ordered):
            low[k] = max(0.0, cal.lower())
            for i in children[k]:
                low[k] = max(low[k], low[i])
            target[k] = cal.upper()

        for k in reversed(range(n_cals)):
            upper = target[k]
            if math.isinf(upper):
                upper = low[k] + 1
            target[k] = (upper + low[k]) / 2.0
            for i in children[k]:
                target[i] = min(target[i], target[k])

        builder = TreeBuilder(self.tree.get_taxa())
        subtree = [-1] * n_cals

        for k in range(n_cals):
            nested = {taxon for i in children[k] for taxon in self.clades[i]}
            members = [builder.leaf(taxon) for taxon in self.clades[k]
                       if taxon not in nested]
            members += [subtree[i] for i in children[k]]

            if len(members) == 1:
                subtree[k] = members[0]
                continue

            base = max(builder.height(member) for member in members)
            top = target[k] if target[k] > base else base + 1.0
            step = (top - base) / (len(members) - 1)

            node = members[0]
            for j in range(1, len(members)):
                node = builder.connect(node, members[j], base + j * step)
            subtree[k] = node

        tops = [k for k in range(n_cals) if self.order.maximal[k]]
        rest = [subtree[k] for k in tops[:-1]]
        rest += [builder.leaf(t) for t in range(len(builder.used))
                 if not builder.used[t]]

        if tops:
            final = subtree[tops[-1]]
        else:
            final = rest.pop(0)
        height = builder.height(final)

        for member in rest:
            height = max(height, builder.height(member)) + 1.0
            final = builder.connect(final, member, height)

        return builder.build()

    #################
    #### LOGGING ####
    #################

    def log_header(self) -> list[str]:
        """
        Returns:
            list[str]: The model id, then one column per calibrated clade.
        """
        return [self.name] + [cal.name for cal in self.order.ordered]

    def log_line(self) -> list[str]:
        """
        Returns:
            list[str]: The current log density, then each calibrated node's
                       height (NaN when the node does not exist).
        """
        row = [str(self.current_log_p)]
        for k, cal in enumerate(self.order.ordered):
            taxa = self.clades[k]
            node = self.tree.common_ancestor_of(taxa) if len(taxa) > 1 \
                   else taxa[0]
            if cal.for_parent:
                node = self.tree.get_parent(node)
            height = self.tree.get_height(node) if node >= 0 else math.nan
            row.append(str(height))
        return row
