"""
Samiti Cooperative Thrift Society Core

Member accounts, per-product transaction policy, catch-up interest accrual
and bulk spreadsheet import for a cooperative thrift society. All money is
handled as Decimal.
"""

__version__ = "1.0.0"
