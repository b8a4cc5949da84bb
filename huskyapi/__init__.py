"""Authentication, configuration and database layers of a security-analysis API."""

__version__ = "0.14.0"