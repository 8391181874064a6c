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
The sampled state of a chain: one tree plus named real parameters.

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

from __future__ import annotations
import math
from typing import Iterable

from .Tree import Tree

#########################
#### EXCEPTION CLASS ####
#########################

class StateError(Exception):
    """
    Error class for missing or ill-formed state elements.
    """
    def __init__(self, message : str = "Error in chain state") -> None:
        self.message = message
        super().__init__(self.message)

##############################
#### REAL PARAMETER CLASS ####
##############################

class RealParameter:
    """
    A named scalar with optional bounds. Values outside the bounds can be
    proposed; the operators that do so report the move as invalid.
    """

    def __init__(self,
                 value : float,
                 lower : float = -math.inf,
                 upper : float = math.inf,
                 name : str = "parameter") -> None:
        """
        Raises:
            StateError: If the bounds are inverted or the value lies outside
                        them.
        Args:
            value (float): Starting value.
            lower (float, optional): Lower bound. Defaults to -inf.
            upper (float, optional): Upper bound. Defaults to inf.
            name (str, optional): Name used for lookup and in the trace.
                                  Defaults to "parameter".
        Returns:
            N/A
        """
        if lower > upper:
            raise StateError(f"Parameter {name} has lower bound {lower} above \
                               upper bound {upper}")
        self.name : str = name
        self.lower : float = lower
        self.upper : float = upper
        self.value : float = float(value)
        if not self.is_within_bounds(self.value):
            raise StateError(f"Starting value {value} of {name} is outside \
                               [{lower}, {upper}]")

    def get_value(self) -> float:
        return self.value

    def set_value(self, value : float) -> None:
        self.value = float(value)

    def is_within_bounds(self, value : float) -> bool:
        """
        Args:
            value (float): A candidate value.
        Returns:
            bool: True if lower <= value <= upper.
        """
        return self.lower <= value <= self.upper

    def log_header(self) -> list[str]:
        return [self.name]

    def log_line(self) -> list[str]:
        return [str(self.value)]

    def __repr__(self) -> str:
        return f"RealParameter({self.name}={self.value})"

#####################
#### STATE CLASS ####
#####################

class State:
    """
    Everything the operators are allowed to change.
    """

    def __init__(self,
                 tree : Tree,
                 parameters : Iterable[RealParameter] = ()) -> None:
        """
        Raises:
            StateError: If two parameters share a name.
        Args:
            tree (Tree): The sampled tree.
            parameters (Iterable[RealParameter], optional): Sampled scalars.
                                                            Defaults to none.
        Returns:
            N/A
        """
        self.tree : Tree = tree
        self.parameters : dict[str, RealParameter] = {}
        for param in parameters:
            if param.name in self.parameters:
                raise StateError(f"Duplicate parameter name: {param.name}")
            self.parameters[param.name] = param

    def get_parameter(self, name : str) -> RealParameter:
        """
        Raises:
            StateError: If no parameter has that name.
        Args:
            name (str): Parameter name.
        Returns:
            RealParameter: The parameter.
        """
        try:
            return self.parameters[name]
        except KeyError:
            raise StateError(f"No parameter named '{name}' in the state") \
                from None

    def log_header(self) -> list[str]:
        return [name for name in self.parameters]

    def log_line(self) -> list[str]:
        return [str(p.get_value()) for p in self.parameters.values()]
