"""shipgate - build, scan and deploy pipeline orchestrator."""

__version__ = "0.3.0"
