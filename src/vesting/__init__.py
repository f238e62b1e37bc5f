"""Scheduled-payment vesting engine.

Holds a durable ledger of payment obligations, each armed with a
height/time trigger, and pays each one out exactly once.
"""

__version__ = "0.1.0"
