"""
Portfolio accounting and rebalancing engine (folio-pilot).

Tracks tax lots across accounts with FIFO depletion, measures drift from
hierarchical group/holding targets, recommends tax-aware sells with
reinvestment of proceeds, and reports time- and money-weighted returns.

Estimates only: no order execution and no authoritative tax figures.
"""

__version__ = "0.1.0"
__author__ = "Folio Pilot Team"
