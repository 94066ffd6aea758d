"""Notifications app package.

In-app notifications plus a best-effort email copy. Delivery problems
are logged and never propagate into the booking or settlement flow.
"""
