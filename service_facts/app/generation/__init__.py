"""
Generative fallback package for the Facts Service.
"""

from service_facts.app.generation.fallback import FallbackGenerator

__all__ = ["FallbackGenerator"]
