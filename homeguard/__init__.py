"""Console helpers shared by the HomeGuard entry points."""
