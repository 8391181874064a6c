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
Concrete operators on the birth rate and on the tree's heights and topology.

Every operator edits the state in place and keeps just enough undo_info to
revert its last proposal.

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

from __future__ import annotations
import math
from typing import TYPE_CHECKING

import numpy as np

from .MCMCSettings import DEFAULT_TARGET_ACCEPTANCE, INVALID_MOVE
from .Operator import Operator, OperatorError, OptimizationSchedule
if TYPE_CHECKING:
    from .State import State
    from .Tree import Tree

##########################
#### HELPER FUNCTIONS ####
##########################

def random_scale(scale_factor : float, rng : np.random.Generator) -> float:
    """
    Draw a scale uniformly from [sf, 1/sf].
    """
    return scale_factor + rng.random() * (1.0 / scale_factor - scale_factor)


def optimized_scale_factor(scale_factor : float, delta : float) -> float:
    """
    Move a scale factor in (0, 1) on the logit scale.
    """
    delta += math.log(1.0 / scale_factor - 1.0)
    return 1.0 / (math.exp(delta) + 1.0)


def clamped_ratio(prob : float, target : float) -> float:
    return min(2.0, max(0.5, prob / target))


def _format(value : float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


def random_internal_non_root(tree : Tree, rng : np.random.Generator) -> int:
    """
    Returns:
        int: A uniformly chosen internal node that is not the root, or -1 if
             the tree has none.
    """
    candidates = [node for node in tree.get_internal_nodes()
                  if not tree.is_root(node)]
    if not candidates:
        return -1
    return candidates[int(rng.integers(len(candidates)))]

###########################
#### PARAMETER SCALING ####
###########################

class ScalingOperator(Operator):
    """
    Base for moves that multiply by a scale drawn from [sf, 1/sf]. Holds the
    scale factor and its tuning.
    """

    def __init__(self,
                 weight : float,
                 schedule : OptimizationSchedule,
                 scale_factor : float,
                 target_acceptance : float,
                 name : str) -> None:
        """
        Raises:
            OperatorError: If scale_factor is not in (0, 1).
        """
        super().__init__(weight, schedule, target_acceptance, name)
        if not 0 < scale_factor < 1:
            raise OperatorError(f"Scale factor of {self.name} must be in \
                                  (0, 1), got {scale_factor}")
        self.scale_factor : float = scale_factor

    def optimize(self, log_alpha : float) -> None:
        delta = self.calc_delta(log_alpha)
        if delta != 0.0:
            self.scale_factor = optimized_scale_factor(self.scale_factor,
                                                       delta)

    def get_coercible_value(self) -> float:
        return self.scale_factor

    def set_coercible_value(self, value : float) -> None:
        self.scale_factor = value

    def get_performance_suggestion(self) -> str:
        """
        Returns:
            str: A suggested scale factor when acceptance is below 0.1 or
                 above 0.4, otherwise an empty string.
        """
        prob = self.acceptance_ratio()
        if math.isnan(prob):
            return ""
        ratio = clamped_ratio(prob, self.target_acceptance)
        suggested = self.scale_factor ** ratio
        if prob < 0.10 or prob > 0.40:
            return f"Try setting scaleFactor to about {_format(suggested)}"
        return ""


class ScaleOperator(ScalingOperator):
    """
    Multiplies a real parameter by a scale drawn from [sf, 1/sf].
    """

    def __init__(self,
                 parameter : str,
                 weight : float,
                 schedule : OptimizationSchedule,
                 scale_factor : float = 0.75,
                 target_acceptance : float = DEFAULT_TARGET_ACCEPTANCE,
                 name : str | None = None) -> None:
        """
        Raises:
            OperatorError: If scale_factor is not in (0, 1).
        Args:
            parameter (str): Name of the parameter in the state.
            weight (float): Selection weight.
            schedule (OptimizationSchedule): Shared burn-in counter.
            scale_factor (float, optional): Tuning value. Defaults to 0.75.
            target_acceptance (float, optional): Defaults to 0.234.
            name (str | None, optional): Report name. Defaults to
                                         "ScaleOperator(<parameter>)".
        Returns:
            N/A
        """
        super().__init__(weight, schedule, scale_factor, target_acceptance,
                         name if name is not None
                         else f"ScaleOperator({parameter})")
        self.parameter : str = parameter
        self.undo_info : float | None = None

    def propose(self, state : State, rng : np.random.Generator) \
            -> tuple[State, float]:
        param = state.get_parameter(self.parameter)
        scale = random_scale(self.scale_factor, rng)
        new_value = param.get_value() * scale

        self.undo_info = param.get_value()
        if not param.is_within_bounds(new_value):
            return state, INVALID_MOVE

        param.set_value(new_value)
        return state, -math.log(scale)

    def undo(self, state : State) -> None:
        if self.undo_info is not None:
            state.get_parameter(self.parameter).set_value(self.undo_info)
            self.undo_info = None


class TreeScaleOperator(ScalingOperator):
    """
    Scales every internal node height of the tree by the same factor.
    """

    def __init__(self,
                 weight : float,
                 schedule : OptimizationSchedule,
                 scale_factor : float = 0.75,
                 target_acceptance : float = DEFAULT_TARGET_ACCEPTANCE,
                 name : str = "TreeScaleOperator") -> None:
        super().__init__(weight, schedule, scale_factor, target_acceptance,
                         name)
        self.undo_heights : np.ndarray | None = None

    def propose(self, state : State, rng : np.random.Generator) \
            -> tuple[State, float]:
        tree = state.tree
        scale = random_scale(self.scale_factor, rng)
        self.undo_heights = tree.heights.copy()
        scaled = tree.scale(scale)
        return state, (scaled - 2) * math.log(scale)

    def undo(self, state : State) -> None:
        if self.undo_heights is not None:
            state.tree.heights[:] = self.undo_heights
            self.undo_heights = None

##############################
#### NODE HEIGHT OPERATORS ###
##############################

class UniformOperator(Operator):
    """
    Redraws the height of one internal, non-root node uniformly between its
    tallest child and its parent.
    """

    def __init__(self,
                 weight : float,
                 schedule : OptimizationSchedule,
                 name : str = "UniformOperator") -> None:
        super().__init__(weight, schedule, name=name)
        self.undo_info : tuple[int, float] | None = None

    def propose(self, state : State, rng : np.random.Generator) \
            -> tuple[State, float]:
        self.undo_info = None
        tree = state.tree
        node = random_internal_non_root(tree, rng)
        if node < 0:
            return state, INVALID_MOVE

        lower = max(tree.get_height(c) for c in tree.get_children(node))
        upper = tree.get_height(tree.get_parent(node))

        self.undo_info = (node, tree.get_height(node))
        tree.set_height(node, lower + rng.random() * (upper - lower))
        return state, 0.0

    def undo(self, state : State) -> None:
        if self.undo_info is not None:
            node, height = self.undo_info
            state.tree.set_height(node, height)
            self.undo_info = None


class RandomWalkOperator(Operator):
    """
    Shifts the height of one internal, non-root node by a uniform step in
    [-window, window]. Steps that leave the interval between the tallest
    child and the parent are invalid.
    """

    def __init__(self,
                 weight : float,
                 schedule : OptimizationSchedule,
                 window : float = 1.0,
                 target_acceptance : float = DEFAULT_TARGET_ACCEPTANCE,
                 name : str = "RandomWalkOperator") -> None:
        super().__init__(weight, schedule, target_acceptance, name)
        if not window > 0:
            raise OperatorError(f"Window size of {self.name} must be \
                                  positive, got {window}")
        self.window : float = window
        self.undo_info : tuple[int, float] | None = None

    def propose(self, state : State, rng : np.random.Generator) \
            -> tuple[State, float]:
        self.undo_info = None
        tree = state.tree
        node = random_internal_non_root(tree, rng)
        if node < 0:
            return state, INVALID_MOVE

        height = tree.get_height(node)
        new_height = height + (2.0 * rng.random() - 1.0) * self.window

        lower = max(tree.get_height(c) for c in tree.get_children(node))
        upper = tree.get_height(tree.get_parent(node))
        if not lower < new_height < upper:
            return state, INVALID_MOVE

        self.undo_info = (node, height)
        tree.set_height(node, new_height)
        return state, 0.0

    def undo(self, state : State) -> None:
        if self.undo_info is not None:
            node, height = self.undo_info
            state.tree.set_height(node, height)
            self.undo_info = None

    def optimize(self, log_alpha : float) -> None:
        delta = self.calc_delta(log_alpha)
        if delta != 0.0:
            self.window = math.exp(delta + math.log(self.window))

    def get_coercible_value(self) -> float:
        return self.window

    def set_coercible_value(self, value : float) -> None:
        self.window = value

    def get_performance_suggestion(self) -> str:
        prob = self.acceptance_ratio()
        if math.isnan(prob):
            return ""
        suggested = self.window * clamped_ratio(prob, self.target_acceptance)
        if prob < 0.10 or prob > 0.40:
            return f"Try setting window size to about {_format(suggested)}"
        return ""

###########################
#### TOPOLOGY OPERATORS ###
###########################

class NarrowExchangeOperator(Operator):
    """
    Swaps a grandchild with its uncle. The swap is only proposed when the
    uncle is younger than the node it moves under, so heights stay valid.
    """

    def __init__(self,
                 weight : float,
                 schedule : OptimizationSchedule,
                 name : str = "NarrowExchangeOperator") -> None:
        super().__init__(weight, schedule, name=name)
        self.undo_info : tuple[int, int, int, int] | None = None

    def propose(self, state : State, rng : np.random.Generator) \
            -> tuple[State, float]:
        self.undo_info = None
        tree = state.tree
        node = random_internal_non_root(tree, rng)
        if node < 0:
            return state, INVALID_MOVE

        grandparent = tree.get_parent(node)
        uncle = next(c for c in tree.get_children(grandparent) if c != node)
        if tree.get_height(uncle) >= tree.get_height(node):
            return state, INVALID_MOVE

        child = tree.get_children(node)[int(rng.integers(2))]

        tree.replace_child(node, child, uncle)
        tree.replace_child(grandparent, uncle, child)
        self.undo_info = (node, grandparent, child, uncle)
        return state, 0.0

    def undo(self, state : State) -> None:
        if self.undo_info is not None:
            node, grandparent, child, uncle = self.undo_info
            state.tree.replace_child(node, uncle, child)
            state.tree.replace_child(grandparent, child, uncle)
            self.undo_info = None
