"""Plan entitlement and upgrade-decision engine."""

__version__ = "0.4.0"
