"""prbench — benchmark pull requests against their base branch."""

__version__ = "0.1.0"
