"""Typed errors raised by the calculation engine.

Every error derives from :class:`ValueError` so callers that only guard
against bad input with ``except ValueError`` keep working.
"""

from __future__ import annotations


class UpCalcError(ValueError):
    """Base class for all engine errors."""


class ValidationError(UpCalcError):
    """A required field is missing or outside its domain."""


class RegimeViolation(UpCalcError):
    """Installation volume exceeds the ceiling of the active regime."""

    def __init__(self, installation_volume: float, ceiling: float, regime: str = "commercial"):
        self.installation_volume = float(installation_volume)
        self.ceiling = float(ceiling)
        self.regime = regime
        super().__init__(
            f"Installation volume {self.installation_volume:.4f} m³ exceeds the "
            f"{regime} ceiling of {self.ceiling:g} m³; switch to the industrial "
            "regime (IGE/UP/1)"
        )

    @property
    def directive(self) -> str:
        return str(self)


class SequenceViolation(UpCalcError):
    """A test was selected, configured or evaluated out of order."""


class LookupGap(UpCalcError):
    """No table row or column applies and the table defines no ceiling."""
