"""Pipeline entry points and shared schemas."""
