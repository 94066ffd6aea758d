"""Activity app package.

Append-only audit trail of booking transitions, settlement steps and
dispute decisions, with the actor and before/after state of each.
"""
