"""Infra Shield Tools - toolkit compliance analysis and license stamping."""

__version__ = "1.0.0"
