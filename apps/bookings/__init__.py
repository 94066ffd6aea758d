"""Bookings app package.

Talent bookings and their lifecycle. Status changes go through the pure
state machine in ``domain`` and are persisted under a row lock with an
optimistic version check; completing or resolving a booking requests its
settlement.
"""
