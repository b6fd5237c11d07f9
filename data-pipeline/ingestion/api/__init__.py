"""HTTP API for job control, dead letters and health."""
