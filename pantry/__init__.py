# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pantry intake API: multi-tenant client registry and visit ledger.
"""

__version__ = "1.0.0"
