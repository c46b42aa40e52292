"""HTTP request construction and execution."""
