"""Study Buddy error-handling core

Error classification and cross-layer correlation, retry and recovery,
event monitoring with alert rules, system health checks, and user feedback
analytics for the Study Buddy learning assistant.
"""

__version__ = "1.0.0"
