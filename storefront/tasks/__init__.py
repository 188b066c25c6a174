from storefront.tasks.reconciliation_loop import ReconciliationLoop

__all__ = ["ReconciliationLoop"]
