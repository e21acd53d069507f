"""envsync — version-controlled GitHub Actions environment variables and secrets."""

__version__ = "0.1.0"
