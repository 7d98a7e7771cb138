"""
Jobsync controller module.

This module contains the reconciler that converges the jobs stored on a
Jenkins controller to the declared repository records, and the report
types describing the outcome of a run.
"""

from .reconciler import JobReconciler, JobResult, RunReport

__all__ = ["JobReconciler", "JobResult", "RunReport"]
