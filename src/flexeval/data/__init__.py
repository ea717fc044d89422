"""Dataset representation and column resolution."""
