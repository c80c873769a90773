"""Track CI workflow runs per repository and branch: watch state, filters, startup and recovery."""

__version__ = "0.5.0"