from .catalog import (
    CachedProduct,
    CachedInventory,
    CachedBranch,
    CachedCategory,
    CachedCustomer,
    CachedRecord,
    CachedPaymentMethod,
)
from .pending import PendingSale, PendingSaleItem, PendingSalePayment, SyncLogEntry, MetaEntry

__all__ = [
    'CachedProduct', 'CachedInventory', 'CachedBranch', 'CachedCategory',
    'CachedCustomer', 'CachedRecord', 'CachedPaymentMethod',
    'PendingSale', 'PendingSaleItem', 'PendingSalePayment', 'SyncLogEntry', 'MetaEntry',
]
