# SPDX-License-Identifier: Apache-2.0

"""
Domain logic package for the pantry intake service.

Pure helpers (keys, scope checks) sit next to the components that own the
business rules: client registry, dedupe index, eligibility markers and the
visit ledger. Import those from their modules directly.
"""
