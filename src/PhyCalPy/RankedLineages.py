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
Enumeration of lineage-count histories between ranked calibration heights.

Once the calibrated heights are sorted, time (looking back from the present)
is cut into levels: level i is the interval that ends at the i'th lowest
calibrated height. If the root is not itself calibrated there is one more,
unbounded, level above the highest calibration.

Lineages are split into groups. Each calibrated clade is a group whose
members are its free taxa (those in no nested clade) plus one lineage per
immediately nested clade, which joins the group at the height where that
nested clade coalesces. Taxa outside every clade, together with the maximal
clades, form the root group whenever the root is not calibrated. Lineages
only ever merge inside their own group, which is exactly what monophyly of
every calibrated clade demands.

A history fixes, for each group and each level, how many of the group's
lineages cross the top of the level. A calibrated group must be down to
exactly 2 lineages at the top of its own level (they merge at the calibrated
height), and the root group must be down to 1 at the top of the unbounded
level. Within a level a group can never drop below one lineage once it has
any. The iterator walks every admissible history, one integer matrix
(levels x groups) at a time.

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

from __future__ import annotations
import itertools
from typing import Iterator, Sequence

import numpy as np

#########################################
#### RANKED LINEAGE ITERATOR CLASS ######
#########################################

class RankedLineageIterator:
    """
    Lazy, restartable enumeration of lineage-count histories for a fixed
    partial order of calibrated clades.

    The structure of the groups only depends on the clades, so it is worked
    out once at construction. setup() must be called with the ranks of the
    calibrated heights before iterating; the same ranks can be iterated over
    any number of times, always in the same order.
    """

    def __init__(self,
                 clades : Sequence[Sequence[int]],
                 partial_order : Sequence[Sequence[int]],
                 maximal : Sequence[bool],
                 n_taxa : int) -> None:
        """
        Args:
            clades (Sequence[Sequence[int]]): Leaf indices of each calibrated
                                              clade, in nesting order.
            partial_order (Sequence[Sequence[int]]): Indices of the clades
                                                     immediately nested in
                                                     each clade.
            maximal (Sequence[bool]): Whether each clade is contained in no
                                      other clade.
            n_taxa (int): Number of leaves in the tree.
        Returns:
            N/A
        """
        self.n_clades : int = len(clades)
        self.n_taxa : int = n_taxa

        sizes = [len(clade) for clade in clades]
        tops = [k for k in range(self.n_clades) if maximal[k]]

        # The root is calibrated when a single clade covers every taxon
        root_calibrated = len(tops) == 1 and sizes[tops[0]] == n_taxa
        self.has_root_group : bool = not root_calibrated

        self._group_children : list[list[int]] = [list(children)
                                                  for children in partial_order]
        self._starts : list[int] = [
            sizes[k] - sum(sizes[c] for c in partial_order[k])
            for k in range(self.n_clades)]

        if self.has_root_group:
            self._group_children.append(tops)
            self._starts.append(n_taxa - sum(sizes[k] for k in tops))

        self.n_groups : int = len(self._starts)
        self.n_levels : int = self.n_clades + (1 if self.has_root_group else 0)

        self._final_level : list[int] = []
        self._joiners : np.ndarray | None = None

    def setup(self, ranks : Sequence[int]) -> int:
        """
        Fix the order of the calibrated heights.

        Args:
            ranks (Sequence[int]): ranks[k] is the 0-based position of clade
                                   k's height among all calibrated heights,
                                   lowest first.
        Returns:
            int: The number of lineage groups.
        """
        if sorted(ranks) != list(range(self.n_clades)):
            raise ValueError(f"Ranks must be a permutation of \
                               0..{self.n_clades - 1}, got {list(ranks)}")

        self._final_level = [int(r) for r in ranks]
        if self.has_root_group:
            self._final_level.append(self.n_levels - 1)

        joiners = np.zeros((self.n_levels, self.n_groups), dtype=np.int64)
        for group, children in enumerate(self._group_children):
            for child in children:
                joiners[ranks[child], group] += 1
        self._joiners = joiners

        return self.n_groups

    def all_joiners(self) -> np.ndarray:
        """
        Returns:
            np.ndarray: joiners[i, g] is the number of lineages that join
                        group g at the top of level i (nested clades that
                        coalesce at that calibrated height).
        """
        self._require_setup()
        return self._joiners

    def n_start(self, group : int) -> int:
        """
        Args:
            group (int): A group index.
        Returns:
            int: Number of lineages the group has at the present (its free
                 taxa).
        """
        return self._starts[group]

    def final_level(self, group : int) -> int:
        """
        Args:
            group (int): A group index.
        Returns:
            int: The level whose top is the group's last merge.
        """
        self._require_setup()
        return self._final_level[group]

    def is_root_group(self, group : int) -> bool:
        return self.has_root_group and group == self.n_groups - 1

    def __iter__(self) -> Iterator[np.ndarray]:
        """
        Start a fresh pass over every admissible history.

        Returns:
            Iterator[np.ndarray]: Matrices lins where lins[i, g] is the number
                                  of group g lineages crossing the top of
                                  level i (0 past the group's final level).
        """
        self._require_setup()
        return self._enumerate()

    def _enumerate(self) -> Iterator[np.ndarray]:
        per_group = [list(self._group_histories(g))
                     for g in range(self.n_groups)]
        for combo in itertools.product(*per_group):
            lins = np.zeros((self.n_levels, self.n_groups), dtype=np.int64)
            for group, history in enumerate(combo):
                lins[:len(history), group] = history
            yield lins

    def _group_histories(self, group : int) -> Iterator[list[int]]:
        """
        Every admissible sequence of crossing counts for a single group, from
        level 0 up to its final level. Fewer merges come first.
        """
        final = self._final_level[group]
        target = 1 if self.is_root_group(group) else 2
        joiners = self._joiners[:, group]

        def extend(level : int,
                   present : int,
                   prefix : list[int]) -> Iterator[list[int]]:
            if level == final:
                # the last merges must happen among at least two lineages
                if present >= 2:
                    yield prefix + [target]
                return
            lowest = 1 if present > 0 else 0
            for crossing in range(present, lowest - 1, -1):
                yield from extend(level + 1,
                                  crossing + int(joiners[level]),
                                  prefix + [crossing])

        yield from extend(0, self._starts[group], [])

    def _require_setup(self) -> None:
        if self._joiners is None:
            raise RuntimeError("setup() must be called with calibration ranks \
                                before iterating")
