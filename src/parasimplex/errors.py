# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements the error types raised by ParaSimplex.
#
# ===--------------------------------------------------------------------------------------===#


class ParaSimplexError(Exception):
    """Base class for all errors raised by ParaSimplex."""


class InvalidGroupSizeError(ParaSimplexError, ValueError):
    """Raised when the worker group does not fit the problem dimension.

    A group of size P can only drive a d-dimensional simplex when 1 <= P <= d + 1, and
    every worker rank must lie in [0, P).
    """


class NumericalInstabilityError(ParaSimplexError, ArithmeticError):
    """Raised when the objective returns a non-finite value (nan or +/-inf)."""


class TransportTimeoutError(ParaSimplexError, TimeoutError):
    """Raised when a collective call does not complete within the liveness timeout."""


class SimplexAllocationError(ParaSimplexError, MemoryError):
    """Raised when the vertex/value storage of a simplex cannot be allocated."""
