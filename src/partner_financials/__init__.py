"""Partner financial reporting and withdrawal engine.

Builds monthly financial reports for an organization's investment partners
from its ledger, and moves partner payout requests through an approval
workflow that ends in a Stripe Connect transfer.
"""

__version__ = "0.1.0"
