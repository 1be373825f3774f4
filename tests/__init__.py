"""
Test suite for Medibook.

Contains unit and integration tests for booking, lifecycle and reminders.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
