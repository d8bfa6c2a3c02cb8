"""Exception taxonomy for the Health Genie core.

``TransientIOError`` is recovered locally by the sync path (queue bump).
``InvariantViolation`` is fatal to the sample store: it halts further writes
until an operator resets it.

Two degraded states are deliberately not exceptions: permanent loss (queue
items past the retry ceiling are logged, counted and listed as stuck) and
insufficient data (``LongTermScore.insufficient_data``).
"""

from __future__ import annotations


class HealthGenieError(Exception):
    """Base class for all Health Genie errors."""


class TransientIOError(HealthGenieError):
    """A remote call failed or timed out.  Safe to retry on the next cycle."""


class InvariantViolation(HealthGenieError):
    """The store's data-loss guarantee was broken.  Requires operator action."""


class StoreHaltedError(HealthGenieError):
    """Raised on writes after an InvariantViolation halted the store."""
