"""Schema-declared authorization and relation resolution over a relational store."""

__version__ = "0.3.0"
