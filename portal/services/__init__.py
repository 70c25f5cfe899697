"""Services backing the reading portal."""
