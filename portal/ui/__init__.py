"""Terminal front-ends for the reading portal."""
