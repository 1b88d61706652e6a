"""
auth — identity correlation for connector requests.

Provides:
  • ``SessionCorrelator`` — signed identity cookie (resolve / bind / clear)
  • FastAPI dependencies handing app-wide objects to routes
"""
