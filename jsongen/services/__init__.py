"""Business logic services for the generation pipeline."""
