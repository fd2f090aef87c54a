"""
Covariate balance diagnostics.
"""

from propensitykit.balance.smd import BalanceReport, CovariateBalance, balance_report, smd, weighted_means

__all__ = ["BalanceReport", "CovariateBalance", "balance_report", "smd", "weighted_means"]
