"""Request pipeline, session and entity cache."""
