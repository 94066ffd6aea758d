"""
Shared Kernel

Base classes and utilities shared across the booking, finance and dispute
contexts: domain primitives, the error taxonomy, the unit of work, the
message bus and encrypted model fields.
"""
