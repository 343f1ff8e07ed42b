"""Release pipeline orchestration for the tod command-line tool."""

__version__ = "0.1.0"
