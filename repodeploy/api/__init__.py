"""HTTP API for repodeploy."""
