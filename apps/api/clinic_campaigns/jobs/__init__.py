"""Background job handlers for the worker."""
