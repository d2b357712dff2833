"""ConsultScribe - consultation recording and transcript validation."""

__version__ = "0.1.0"
