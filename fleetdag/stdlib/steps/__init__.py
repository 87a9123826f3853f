"""Built-in step implementations."""
