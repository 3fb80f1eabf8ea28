"""Built-in pipeline step implementations, one module per step type."""
