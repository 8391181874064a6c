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
Diagnostic logging and trace output.

The log_* functions only format and emit messages through the package logger.
TraceLogger writes the tab-delimited sample trace of a chain: one header row,
then one row per logged sample.

Last Edit : 10/17/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]
"""

from __future__ import annotations
import logging
import sys
from typing import Any, Iterable, TextIO, TYPE_CHECKING
if TYPE_CHECKING:
    from .Calibration import CalibrationOrder
    from .Operator import Operator

logger = logging.getLogger(__name__)

#####################################
#### MODEL SETUP DIAGNOSTICS ########
#####################################

def log_calibration_order(order : CalibrationOrder) -> None:
    """
    Log the nesting of a set of calibrations at DEBUG level.

    Args:
        order (CalibrationOrder): Ordered calibrations.
    Returns:
        N/A
    """
    if not logger.isEnabledFor(logging.DEBUG):
        return
    for k, cal in enumerate(order.ordered):
        nested = [order.ordered[i].name for i in order.partial_order[k]]
        parent = order.containing[k]
        logger.debug(f"Calibration {k} '{cal.name}' ({len(cal)} taxa): "
                     f"nested {nested or '-'}, inside "
                     f"{order.ordered[parent].name if parent >= 0 else '-'}")


def log_correction_strategy(model_name : str,
                            correction : str,
                            strategy : str) -> None:
    """
    Log which marginal correction a calibrated model will use.
    """
    logger.info(f"{model_name}: correction '{correction}' uses the "
                f"{strategy} marginal")

#########################
#### CHAIN PROGRESS #####
#########################

def log_chain_start(chain_length : int, start_posterior : float) -> None:
    logger.info(f"Starting chain of {chain_length} samples at log posterior "
                f"{start_posterior:.6f}")


def log_chain_progress(sample : int, posterior : float) -> None:
    logger.debug(f"Sample {sample}: log posterior {posterior:.6f}")


def log_operator_summary(operators : Iterable[Operator]) -> None:
    """
    Log the end-of-run operator table at INFO level.

    Args:
        operators (Iterable[Operator]): Operators of the chain.
    Returns:
        N/A
    """
    logger.info(f"{'Operator':<70}Tuning\t#accept\t#reject\tTotal\t"
                f"acceptance rate")
    for op in operators:
        logger.info(str(op))

###########################
#### TRACE LOGGER CLASS ###
###########################

class TraceLogger:
    """
    Writes a tab-delimited trace: a header row built from every loggable's
    column names, then a row per logged sample. The first column is always
    the sample number.
    """

    def __init__(self,
                 id : str,
                 loggables : Iterable[Any],
                 file_name : str | None = None,
                 stream : TextIO | None = None) -> None:
        """
        Args:
            id (str): Name of this trace, used in diagnostics.
            loggables (Iterable[Any]): Objects with log_header() and
                                       log_line() methods returning lists of
                                       strings.
            file_name (str | None, optional): File to write to. Defaults to
                                              None, meaning stream is used.
            stream (TextIO | None, optional): Open stream to write to when no
                                              file is given. Defaults to
                                              stdout.
        Returns:
            N/A
        """
        self.id : str = id
        self.loggables : list[Any] = list(loggables)
        self.file_name : str | None = file_name
        self.stream : TextIO | None = stream
        self._stream : TextIO | None = None
        self._owns_stream : bool = False
        self._is_open : bool = False
        self.rows_written : int = 0

    def open(self) -> None:
        """
        Open the destination and write the header row.
        """
        if self.file_name is not None:
            self._stream = open(self.file_name, "w")
            self._owns_stream = True
        else:
            self._stream = self.stream if self.stream is not None \
                           else sys.stdout
        self._is_open = True

        header = ["Sample"]
        for item in self.loggables:
            header.extend(item.log_header())
        self._write(header)
        logger.debug(f"Trace '{self.id}' opened with {len(header)} columns")

    def log(self, sample : int) -> None:
        """
        Write the current values of every loggable.

        Args:
            sample (int): Sample number for the first column.
        Returns:
            N/A
        """
        row = [str(sample)]
        for item in self.loggables:
            row.extend(item.log_line())
        self._write(row)
        self.rows_written += 1

    def close(self) -> None:
        if not self._is_open:
            return
        self._is_open = False
        self._stream.flush()
        if self._owns_stream:
            self._stream.close()
        self._stream = None
        self._owns_stream = False

    def _write(self, fields : list[str]) -> None:
        if not self._is_open:
            raise RuntimeError(f"Trace '{self.id}' is not open")
        self._stream.write("\t".join(fields) + "\n")

    def __enter__(self) -> TraceLogger:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
