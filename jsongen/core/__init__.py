"""Application wiring: lifespan, service container and middleware."""
