"""OmniLens: GitHub Actions health metrics API."""

__version__ = "1.0.0"
