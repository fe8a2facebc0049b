"""
Clinic Booking Service

A FastAPI service for booking clinic appointments, resolving practitioner
availability and managing blocks, for practices with several clinics.
"""

__version__ = "1.0.0"
