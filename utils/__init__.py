"""Shared helpers: error taxonomy, Result type and output buffer pooling."""
