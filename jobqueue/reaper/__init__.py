"""
Reaper module.
Contains the reaper that reclaims expired reservations.
"""

from jobqueue.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
