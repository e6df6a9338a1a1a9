"""Strata - dependency-ordered infrastructure orchestration."""

__version__ = "0.1.0"
