"""
Core infrastructure for Amparo.

Exports:
    - Database: async SQLAlchemy engine and session factory
    - StepResult: success/failure value returned by pipeline steps
"""

from .database import Database
from .step_result import StepResult

__all__ = ["Database", "StepResult"]
