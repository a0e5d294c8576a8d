from .reconciler import OrderReconciler, ReconciliationOutcome, ReconciliationResult

__all__ = [
    "OrderReconciler",
    "ReconciliationOutcome",
    "ReconciliationResult",
]
