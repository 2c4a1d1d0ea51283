"""repodeploy - repository-to-hosting deployment pipeline."""

__version__ = "0.1.0"
