"""External service clients: language model and audit sink."""
