"""
Fact resolution package for the Facts Service.
"""

from service_facts.app.resolver.fact_resolver import FactResolver

__all__ = ["FactResolver"]
