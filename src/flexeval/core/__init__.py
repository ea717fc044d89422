"""Core types shared across flexeval: enums and the exception hierarchy."""
