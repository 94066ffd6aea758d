"""Finances app package.

Ledger of booking money movements, the fee calculator, the Paystack
transfer gateway and the settlement orchestrator that pays providers
out exactly once.
"""
