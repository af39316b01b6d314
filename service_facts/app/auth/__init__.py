"""
Authentication package for the Facts Service.
"""

from service_facts.app.auth.gate import AuthGate, credential_from_headers

__all__ = ["AuthGate", "credential_from_headers"]
