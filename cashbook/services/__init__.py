"""
Consolidated services module.

Usage:
    from cashbook.services import UnifiedTransferService, BalanceReconciler
"""

# Balances
from cashbook.services.balance import BalanceReconciler

# Write paths
from cashbook.services.accounts import AccountService
from cashbook.services.flows import FlowService
from cashbook.services.transfers import UnifiedTransferService

# Migration and maintenance
from cashbook.services.loans import LoanConsolidationService
from cashbook.services.consistency import ConsistencyValidator
from cashbook.services.maintenance import MaintenanceService


__all__ = [
    "BalanceReconciler",
    "AccountService",
    "FlowService",
    "UnifiedTransferService",
    "LoanConsolidationService",
    "ConsistencyValidator",
    "MaintenanceService",
]
