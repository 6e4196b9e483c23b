"""Local invocation of function handlers."""
