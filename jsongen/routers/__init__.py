"""API routers for the generation service."""
