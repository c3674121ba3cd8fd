"""Service layer: storage backends, synchronization and narration runs."""
