"""Query model, builder and SQL grammar."""
