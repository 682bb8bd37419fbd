"""MedGuard Interaction Engine - drug interaction checks via a staged subagent pipeline."""

__version__ = "1.0.0"
