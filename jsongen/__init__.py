"""jsongen - Prompt-to-JSON Generation Service

Turns free-text prompts into structured JSON datasets using an LLM backend,
with a job queue that keeps slow generation calls off the request path.
"""

__version__ = "0.1.0"
