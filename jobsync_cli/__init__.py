"""
Jobsync command line module.

Resolves settings from options and JOBSYNC_* environment variables and
runs the reconciler over the records of a CSV file.
"""
