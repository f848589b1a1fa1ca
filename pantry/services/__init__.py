# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Document store backends and side effects.
"""

import os
from typing import Optional

from .store import (
    CLIENTS,
    VISITS,
    ELIGIBILITY_MARKERS,
    DocumentStore,
    Transaction,
    TransactionConflict
)


def create_document_store(backend: Optional[str] = None, **kwargs) -> DocumentStore:
    """
    Create the document store selected by ``STORE_BACKEND``.

    Args:
        backend: ``mongodb`` or ``memory``; defaults to the environment

    Returns:
        Configured document store
    """
    backend = (backend or os.getenv('STORE_BACKEND', 'mongodb')).lower()

    if backend == 'memory':
        from .memory import MemoryDocumentStore
        return MemoryDocumentStore(**kwargs)
    if backend == 'mongodb':
        from .mongodb import MongoDocumentStore
        return MongoDocumentStore(**kwargs)

    raise ValueError(f"Unknown store backend: {backend}")


__all__ = [
    "CLIENTS",
    "VISITS",
    "ELIGIBILITY_MARKERS",
    "DocumentStore",
    "Transaction",
    "TransactionConflict",
    "create_document_store"
]
