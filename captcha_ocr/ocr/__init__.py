"""Image preprocessing, recognition and candidate selection."""
