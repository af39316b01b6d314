"""
Usage recording package for the Facts Service.
"""

from service_facts.app.usage.recorder import UsageRecorder

__all__ = ["UsageRecorder"]
