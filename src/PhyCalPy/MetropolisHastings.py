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
Single chain Metropolis-Hastings sampler over a State.

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

from __future__ import annotations
import math
from typing import Sequence

import numpy as np

from .Distribution import Distribution
from .Logger import TraceLogger, log_chain_progress, log_chain_start, \
                    log_operator_summary, logger
from .MCMCSettings import CHAIN_LENGTH, GIBBS_MOVE, INVALID_MOVE, LOG_EVERY, \
                          SEED
from .Operator import Operator
from .State import State

###########################
#### EXCEPTION CLASSES ####
###########################

class MetropolisHastingsException(Exception):
    """
    This exception is raised when there is an error running the Metropolis
    Hastings algorithm.
    """

    def __init__(self,
                 message : str = "Error running Metropolis-Hastings") -> None:
        """
        Initialize the exception with an error message.

        Args:
            message (str, optional): A custom error message. Defaults to
                                     "Error running Metropolis-Hastings".
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

####################
#### MCMC CLASS ####
####################

class MCMC:
    """
    Repeatedly picks an operator with probability proportional to its weight,
    applies it, evaluates the posterior and accepts or rejects the proposal
    with the Metropolis-Hastings rule. Each outcome is fed back to the
    operator's tuning.
    """

    def __init__(self,
                 state : State,
                 posterior : Distribution,
                 operators : Sequence[Operator],
                 chain_length : int = CHAIN_LENGTH,
                 log_every : int = LOG_EVERY,
                 seed : int | None = SEED,
                 trace : TraceLogger | None = None) -> None:
        """
        Initialize a Metropolis Hastings chain.

        Raises:
            MetropolisHastingsException: If there are no operators, or the
                                         chain length or log interval is not
                                         positive.
        Args:
            state (State): The state to sample. Edited in place.
            posterior (Distribution): The target density, evaluated on state.

            operators (Sequence[Operator]): Proposal operators, all sharing
                                            one OptimizationSchedule.

            chain_length (int, optional): Number of proposals. Defaults to
                                          CHAIN_LENGTH.
            log_every (int, optional): Trace interval. Defaults to LOG_EVERY.
            seed (int | None, optional): Seed for the chain's random number
                                         generator. Defaults to SEED.
            trace (TraceLogger | None, optional): Where samples are written.
                                                  Defaults to None (no trace).
        Returns:
            N/A
        """
        if len(operators) == 0:
            raise MetropolisHastingsException("A chain needs at least one \
                                               operator")
        if chain_length < 0:
            raise MetropolisHastingsException(f"Chain length must be \
                                                non-negative, got \
                                                {chain_length}")
        if log_every <= 0:
            raise MetropolisHastingsException(f"Log interval must be \
                                                positive, got {log_every}")

        self.state : State = state
        self.posterior : Distribution = posterior
        self.operators : list[Operator] = list(operators)
        self.chain_length : int = chain_length
        self.log_every : int = log_every
        self.trace : TraceLogger | None = trace
        self.rng : np.random.Generator = np.random.default_rng(seed)

        weights = np.array([op.weight for op in self.operators], dtype=float)
        self.selection_probs : np.ndarray = weights / weights.sum()

        self.current_log_p : float = -math.inf

    def select_operator(self) -> Operator:
        """
        Returns:
            Operator: An operator drawn proportionally to its weight.
        """
        index = int(self.rng.choice(len(self.operators),
                                    p=self.selection_probs))
        return self.operators[index]

    def step(self) -> bool:
        """
        Run one proposal through to acceptance or rejection.

        Returns:
            bool: True if the proposal was accepted.
        """
        op = self.select_operator()
        state, log_hr = op.propose(self.state, self.rng)

        if log_hr == INVALID_MOVE:
            op.reject()
            op.undo(state)
            return False

        new_log_p = self.posterior.calculate_log_p()

        if log_hr == GIBBS_MOVE:
            op.accept()
            self.current_log_p = new_log_p
            return True

        log_alpha = new_log_p - self.current_log_p + log_hr
        u = self.rng.random()
        log_u = math.log(u) if u > 0 else -math.inf

        if log_alpha >= log_u:
            op.accept()
            self.current_log_p = new_log_p
            accepted = True
        else:
            op.reject()
            op.undo(state)
            accepted = False

        op.optimize(log_alpha)
        return accepted

    def run(self) -> State:
        """
        Run the chain for chain_length proposals.

        Raises:
            MetropolisHastingsException: If the starting state has zero
                                         posterior density.
        Args:
            N/A
        Returns:
            State: The state after the last proposal.
        """
        self.current_log_p = self.posterior.calculate_log_p()
        if math.isnan(self.current_log_p) or self.current_log_p == -math.inf:
            raise MetropolisHastingsException("Could not find a proper state \
                                               to start from: the starting \
                                               posterior is " \
                                               + str(self.current_log_p))

        log_chain_start(self.chain_length, self.current_log_p)

        if self.trace is not None:
            self.trace.open()
            self.trace.log(0)

        accepted = 0
        try:
            for sample in range(1, self.chain_length + 1):
                if self.step():
                    accepted += 1

                if sample % self.log_every == 0:
                    # rejected proposals leave stale component values
                    self.current_log_p = self.posterior.calculate_log_p()
                    log_chain_progress(sample, self.current_log_p)
                    if self.trace is not None:
                        self.trace.log(sample)
        finally:
            if self.trace is not None:
                self.trace.close()

        logger.info(f"Chain done: {accepted} of {self.chain_length} "
                    f"proposals accepted")
        log_operator_summary(self.operators)
        return self.state
