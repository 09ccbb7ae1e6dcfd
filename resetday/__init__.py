"""
resetday - Daily ritual tracker with a client-side interrupt scheduler.

Six fixed check-ins ("interrupts") per day. The scheduler works out which one
is due from the reference-timezone clock, reconciles it with recorded
completions, and prompts the user once per due interrupt, surviving restarts,
suspended processes and midnight rollover.
"""

__version__ = "1.0.0"
__license__ = "MIT"

__all__ = ["__version__", "__license__"]
