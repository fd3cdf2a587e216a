"""clinbox: terminal email triage with AI-assisted analysis."""

__version__ = "0.3.0"
