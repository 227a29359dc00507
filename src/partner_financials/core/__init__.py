"""Domain core: ledger reading, aggregation, reports and withdrawal workflow.

Modules:
    month        ReportMonth: calendar month value with UTC bounds
    ledger       LedgerReader: normalizes source records into ledger entries
    aggregator   aggregate/summarize_month: pure report arithmetic
    workflow     withdrawal state machine
    services     ReportService and WithdrawalService
"""
