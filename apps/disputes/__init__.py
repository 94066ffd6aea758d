"""Disputes app package.

Disputes filed by either party of a completed booking and their
resolution by platform admins, which re-terms the booking's settlement.
"""
