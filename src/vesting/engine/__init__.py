"""Vesting engine — obligation lifecycle and sweep."""

from vesting.engine.disbursement import DisbursementEngine

__all__ = ["DisbursementEngine"]
