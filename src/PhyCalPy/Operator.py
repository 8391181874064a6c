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
Proposal operators and their self-tuning bookkeeping.

An operator proposes an edit to the state and reports the log Hastings ratio
of the edit. After the sampler decides, exactly one of accept()/reject() is
called, then optimize(log_alpha) so the operator can move its tuning value
toward the target acceptance probability (Robbins-Monro style). Tuning is
held off for the first AUTO_OPTIMIZE_DELAY adaptable proposals of the whole
chain, counted on an OptimizationSchedule shared by all its operators.

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

from __future__ import annotations
import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from .MCMCSettings import AUTO_OPTIMIZE_DELAY, DEFAULT_TARGET_ACCEPTANCE, \
                          OPERATOR_NAME_WIDTH, TUNING_VALUE_WIDTH
if TYPE_CHECKING:
    import numpy as np
    from .State import State

#########################
#### EXCEPTION CLASS ####
#########################

class OperatorError(Exception):
    """
    Raised for operators that are misconfigured, e.g. with a missing or
    non-positive weight.
    """
    def __init__(self, message : str = "Operator configuration error") -> None:
        self.message = message
        super().__init__(self.message)

######################################
#### OPTIMIZATION SCHEDULE CLASS #####
######################################

class OptimizationSchedule:
    """
    Burn-in counter for operator tuning. One instance is shared by every
    operator of a chain; independent chains each get their own.
    """

    def __init__(self, delay : int = AUTO_OPTIMIZE_DELAY) -> None:
        """
        Args:
            delay (int, optional): Number of adaptable proposals to let pass
                                   before tuning starts. Defaults to
                                   AUTO_OPTIMIZE_DELAY (10000).
        Returns:
            N/A
        """
        if delay < 0:
            raise OperatorError(f"Optimization delay must be >= 0, got {delay}")
        self.delay : int = delay
        self.count : int = 0

    def is_active(self) -> bool:
        """
        Returns:
            bool: True once the burn-in window has passed.
        """
        return self.count >= self.delay

    def tick(self) -> None:
        self.count += 1

######################
#### OPERATOR CLASS ##
######################

class Operator(ABC):
    """
    Abstract proposal operator with acceptance statistics and tuning.

    Subclasses implement propose() and undo(). Tunable subclasses also
    override optimize(), get/set_coercible_value() and, optionally,
    get_performance_suggestion().
    """

    def __init__(self,
                 weight : float,
                 schedule : OptimizationSchedule,
                 target_acceptance : float = DEFAULT_TARGET_ACCEPTANCE,
                 name : str | None = None) -> None:
        """
        Raises:
            OperatorError: If weight is missing, not finite, or not positive,
                           or if the target acceptance is outside (0, 1).
        Args:
            weight (float): Relative selection weight among all operators.
            schedule (OptimizationSchedule): The chain's shared burn-in
                                             counter.
            target_acceptance (float, optional): Acceptance probability the
                                                 tuning aims for. Defaults to
                                                 0.234.
            name (str | None, optional): Name used in reports. Defaults to
                                         the class name.
        Returns:
            N/A
        """
        self.name : str = name if name is not None else type(self).__name__

        if weight is None:
            raise OperatorError(f"Operator {self.name} needs a weight")
        if not (math.isfinite(weight) and weight > 0):
            raise OperatorError(f"Operator {self.name} has invalid weight \
                                  {weight}, it must be strictly positive")
        if not 0 < target_acceptance < 1:
            raise OperatorError(f"Operator {self.name} has invalid target \
                                  acceptance {target_acceptance}")

        self.weight : float = float(weight)
        self.schedule : OptimizationSchedule = schedule
        self.target_acceptance : float = target_acceptance

        self.accepted : int = 0
        self.rejected : int = 0
        self.accepted_for_correction : int = 0
        self.rejected_for_correction : int = 0

    ###################
    #### PROPOSALS ####
    ###################

    @abstractmethod
    def propose(self,
                state : State,
                rng : np.random.Generator) -> tuple[State, float]:
        """
        Edit the state in place.

        Args:
            state (State): The current state.
            rng (np.random.Generator): Source of randomness.
        Returns:
            tuple[State, float]: The edited state and the log Hastings ratio.
                                 -inf marks an invalid proposal, inf a Gibbs
                                 move.
        """
        pass

    @abstractmethod
    def undo(self, state : State) -> None:
        """
        Revert the last proposal. Only called after a rejection.

        Args:
            state (State): The state that was passed to propose().
        Returns:
            N/A
        """
        pass

    ######################
    #### BOOKKEEPING #####
    ######################

    def accept(self) -> None:
        self.accepted += 1
        if self.schedule.is_active():
            self.accepted_for_correction += 1

    def reject(self) -> None:
        self.rejected += 1
        if self.schedule.is_active():
            self.rejected_for_correction += 1

    def get_target_acceptance_probability(self) -> float:
        return self.target_acceptance

    def acceptance_ratio(self) -> float:
        """
        Returns:
            float: Fraction of proposals accepted so far, NaN before the
                   first proposal.
        """
        total = self.accepted + self.rejected
        return self.accepted / total if total > 0 else math.nan

    ################
    #### TUNING ####
    ################

    def calc_delta(self, log_alpha : float) -> float:
        """
        Step for the tuning value after one proposal outcome.

        The first schedule.delay calls, counted across every operator of the
        chain, only advance the shared counter and return 0.

        Args:
            log_alpha (float): Log posterior ratio plus log Hastings ratio of
                               the proposal.
        Returns:
            float: (exp(min(log_alpha, 0)) - target) / (n + 1), where n is
                   the number of post burn-in outcomes. 0 if not finite.
        """
        if not self.schedule.is_active():
            self.schedule.tick()
            return 0.0

        n = self.rejected_for_correction + self.accepted_for_correction
        delta = (1.0 / (n + 1.0)) * \
                (math.exp(min(log_alpha, 0.0)) - self.target_acceptance)
        return delta if math.isfinite(delta) else 0.0

    def optimize(self, log_alpha : float) -> None:
        """
        Adjust the tuning value. Untuned operators leave this as a no-op.
        """
        pass

    def get_coercible_value(self) -> float:
        """
        Returns:
            float: The tuning value, NaN for operators without one.
        """
        return math.nan

    def set_coercible_value(self, value : float) -> None:
        pass

    def get_performance_suggestion(self) -> str:
        return ""

    ###################
    #### REPORTING ####
    ###################

    def __str__(self) -> str:
        """
        One line report: name padded to a fixed width, the tuning value
        clipped to a few characters, accepted, rejected and total counts,
        acceptance ratio, then any tuning suggestion.
        """
        line = self.name.ljust(OPERATOR_NAME_WIDTH)

        value = self.get_coercible_value()
        if math.isnan(value):
            line += " " * TUNING_VALUE_WIDTH
        else:
            line += str(value)[:TUNING_VALUE_WIDTH]
        line += " "

        total = self.accepted + self.rejected
        return line + "\t" + str(self.accepted) + "\t" + str(self.rejected) \
               + "\t" + str(total) + "\t" + _format_ratio(self.acceptance_ratio()) \
               + " " + self.get_performance_suggestion()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name}, weight={self.weight})"


def _format_ratio(ratio : float) -> str:
    """
    Up to three decimals, trailing zeros dropped.
    """
    if math.isnan(ratio):
        return "NaN"
    text = f"{ratio:.3f}".rstrip("0").rstrip(".")
    return text if text else "0"
