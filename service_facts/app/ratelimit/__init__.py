"""
Rate limiting package for the Facts Service.

Holds the fixed-window granularities and the quota tracker that meters
each identity against its request-rate and monthly budgets.
"""

from service_facts.app.ratelimit.windows import FixedWindow, CalendarMonthWindow
from service_facts.app.ratelimit.quota_tracker import QuotaTracker

__all__ = ["FixedWindow", "CalendarMonthWindow", "QuotaTracker"]
