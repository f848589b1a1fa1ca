#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Script to create the MongoDB indexes used by dedupe, search and visit queries.

Usage: python -m pantry.scripts.create_indexes
"""

import sys
import logging

from pantry.services.mongodb import MongoDocumentStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """Create MongoDB indexes."""
    store = MongoDocumentStore()
    try:
        logger.info("Starting MongoDB index creation...")

        health = store.health_check()
        if health['status'] != 'healthy':
            logger.error(f"MongoDB is not healthy: {health}")
            sys.exit(1)

        logger.info(f"Connected to MongoDB {health['version']} - Database: {health['database']}")

        store.create_indexes()

        logger.info("MongoDB indexes created successfully!")

    except Exception as e:
        logger.error(f"Failed to create indexes: {e}")
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
