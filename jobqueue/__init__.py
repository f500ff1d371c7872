"""
Job Queue Worker and Scheduler

Background processing for a web application: queue workers with exclusive,
time-bounded reservations and retry/dead-letter semantics, plus a tick-based
task scheduler, both coordinating only through a shared Redis-compatible store.
"""

__version__ = "1.0.0"
