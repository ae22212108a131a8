"""
Reaper module.
Contains the operator-run reaper for reclaiming stale leases.
"""

from queuectl.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
