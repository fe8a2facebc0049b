"""
Test suite for the Clinic Booking Service.

Covers interval arithmetic, availability resolution, booking validation,
concurrent booking and the HTTP API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
