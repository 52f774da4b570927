"""Data migrations between Prayer Wall storage backends."""
