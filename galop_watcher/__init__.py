"""
Galop Watcher - Change detection for horse-racing federation tables.

This package provides functionality to:
- Normalize scraped engagement and result rows into keyed records
- Reconcile each batch with the records seen in previous runs
- Persist the seen store with a bounded size
- Format new, changed and confirmed entries as chat messages
"""

__version__ = "1.0.0"
__author__ = "Galop Watcher Team"
