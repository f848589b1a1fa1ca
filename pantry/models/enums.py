# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the pantry intake platform.
"""

from enum import Enum


ALL_LOCATIONS = "ALL"


class AppRole(str, Enum):
    """Staff roles within an organization."""
    ADMIN = "admin"
    MANAGER = "manager"
    VOLUNTEER = "volunteer"
    VIEWER = "viewer"


class Capability(str, Enum):
    """Actions a role may perform."""
    DASHBOARD = "dashboard"
    VIEW_REPORTS = "viewReports"
    CREATE_CLIENTS = "createClients"
    EDIT_CLIENTS = "editClients"
    DEACTIVATE_CLIENTS = "deactivateClients"
    MERGE_CLIENTS = "mergeClients"
    RECOUNT_CLIENTS = "recountClients"
    LOG_VISITS = "logVisits"
    EDIT_VISITS = "editVisits"
    ALL_LOCATIONS = "allLocations"


ROLE_CAPABILITIES = {
    AppRole.ADMIN: frozenset(Capability),
    AppRole.MANAGER: frozenset({
        Capability.DASHBOARD,
        Capability.VIEW_REPORTS,
        Capability.CREATE_CLIENTS,
        Capability.EDIT_CLIENTS,
        Capability.LOG_VISITS,
        Capability.EDIT_VISITS,
        Capability.ALL_LOCATIONS,
    }),
    AppRole.VOLUNTEER: frozenset({
        Capability.DASHBOARD,
        Capability.CREATE_CLIENTS,
        Capability.EDIT_CLIENTS,
        Capability.LOG_VISITS,
    }),
    AppRole.VIEWER: frozenset({
        Capability.DASHBOARD,
        Capability.VIEW_REPORTS,
    }),
}


def capabilities_for(role) -> frozenset:
    """Return the capability set for a role name; unknown roles get nothing."""
    try:
        return ROLE_CAPABILITIES[AppRole(role)]
    except ValueError:
        return frozenset()
