"""
Medibook

A FastAPI-based medical appointment service: slot availability, appointment
lifecycle management, doctor calendars, payments, audit trail and
time-based appointment reminders.
"""

__version__ = "1.0.0"
