"""Users app package.

Custom user model with marketplace roles, KYC state and the encrypted
M-Pesa payout number, plus the lookups settlement guards rely on.
"""
