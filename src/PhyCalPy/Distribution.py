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
Log densities over the state that a chain targets.

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [ ]
"""

from __future__ import annotations
import math
from abc import ABC, abstractmethod
from typing import Iterable, TYPE_CHECKING
if TYPE_CHECKING:
    from scipy.stats._distn_infrastructure import rv_frozen
    from .State import RealParameter


class Distribution(ABC):
    """
    Abstract log density. Subclasses recompute the value from the current
    state every time calculate_log_p is called.
    """

    def __init__(self, name : str) -> None:
        self.name : str = name
        self.current_log_p : float = 0.0

    @abstractmethod
    def calculate_log_p(self) -> float:
        """
        Returns:
            float: Log density of the current state. -inf if the state is
                   outside the support.
        """
        pass

    def get_current_log_p(self) -> float:
        """
        Returns:
            float: The value computed by the last calculate_log_p call.
        """
        return self.current_log_p

    def log_header(self) -> list[str]:
        return [self.name]

    def log_line(self) -> list[str]:
        return [str(self.current_log_p)]


class ParameterPrior(Distribution):
    """
    A frozen scipy.stats distribution placed on a real parameter.
    """

    def __init__(self,
                 parameter : RealParameter,
                 distribution : rv_frozen,
                 name : str | None = None) -> None:
        super().__init__(name if name is not None
                         else f"{parameter.name}.prior")
        self.parameter : RealParameter = parameter
        self.distribution : rv_frozen = distribution

    def calculate_log_p(self) -> float:
        self.current_log_p = float(self.distribution.logpdf(
                                        self.parameter.get_value()))
        return self.current_log_p


class CompoundDistribution(Distribution):
    """
    Product of independent densities. Evaluation stops at the first
    component that is -inf.
    """

    def __init__(self,
                 components : Iterable[Distribution],
                 name : str = "posterior") -> None:
        super().__init__(name)
        self.components : list[Distribution] = list(components)

    def calculate_log_p(self) -> float:
        total = 0.0
        for component in self.components:
            total += component.calculate_log_p()
            if math.isinf(total) and total < 0:
                break
        self.current_log_p = total
        return total
