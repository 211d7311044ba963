"""HTTP API for revisioned entities and migration runs."""
