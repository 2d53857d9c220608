"""
Background maintenance jobs (cache sweep, rate-limit sweep, retraining check,
A/B test completion), each run by a PeriodicTask.
"""

from leadscore.jobs.maintenance import build_maintenance_tasks

__all__ = ["build_maintenance_tasks"]
