"""HTTP API for Ilyzlist."""
