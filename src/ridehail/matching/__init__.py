"""Driver dispatch: surge signals, candidate ranking, ride creation and request timeouts."""
