"""Store implementations backed by shared infrastructure."""
