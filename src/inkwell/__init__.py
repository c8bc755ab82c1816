"""Stream chat completions into a live text document."""

__version__ = "0.1.0"
