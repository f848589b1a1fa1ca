# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
HAL (Hypertext Application Language) response formatting utilities.
Client and visit resources carry affordance links for the actions the
caller's role and the record's state allow.
"""

from typing import Dict, List, Any, Optional
from urllib.parse import urljoin, urlencode

from ..domain.errors import CustomException, ValidationException
from ..models.entities import Client, TenantScope, Visit
from ..models.enums import Capability
from ..models.responses import HalLink

PROBLEM_BASE_URL = "https://api.pantry-intake.org/problems/"

_ERROR_TITLES = {
    400: "Bad Request",
    401: "Authentication Required",
    403: "Forbidden",
    404: "Resource Not Found",
    409: "Conflict",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


def serialize(entity) -> Dict[str, Any]:
    """Entity as camelCase JSON-ready dict."""
    return entity.model_dump(by_alias=True, mode="json")


class HalLinkBuilder:
    """Builder for HAL links with proper URL construction."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/') + '/'

    def build_link(
        self,
        path: str,
        method: str = "GET",
        content_type: Optional[str] = None,
        title: Optional[str] = None,
        templated: bool = False
    ) -> HalLink:
        """Build a HAL link with proper URL construction."""
        href = urljoin(self.base_url, path.lstrip('/'))

        return HalLink(
            href=href,
            method=method,
            type=content_type,
            title=title,
            templated=templated or None
        )

    def build_self_link(self, resource_path: str) -> HalLink:
        """Build self link for a resource."""
        return self.build_link(resource_path, title="Self")

    def build_action_link(
        self,
        resource_path: str,
        action: str,
        method: str = "POST",
        title: Optional[str] = None
    ) -> HalLink:
        """Build action link for a resource."""
        return self.build_link(
            f"{resource_path}/{action}",
            method=method,
            content_type="application/json",
            title=title or action.title()
        )


class AffordanceLinkBuilder:
    """Builder for conditional affordance links based on capabilities and state."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def build_client_affordances(self, client: Client, scope: TenantScope) -> Dict[str, HalLink]:
        """Links for a client; visit logging only while active and at a concrete location."""
        base_path = f"/api/clients/{client.id}"
        links = {
            'self': self.link_builder.build_self_link(base_path),
            'collection': self.link_builder.build_link("/api/clients", title="Clients"),
            'visits': self.link_builder.build_link(
                f"/api/visits?{urlencode({'clientId': client.id})}", title="Visit history"
            )
        }

        if scope.has_capability(Capability.EDIT_CLIENTS):
            links['edit'] = self.link_builder.build_link(
                base_path, method="PUT", content_type="application/json", title="Edit client"
            )

        if client.inactive:
            if scope.has_capability(Capability.DEACTIVATE_CLIENTS) and not client.merged_into_id:
                links['reactivate'] = self.link_builder.build_action_link(
                    base_path, "reactivate", title="Reactivate client"
                )
        else:
            if scope.has_capability(Capability.LOG_VISITS) and scope.has_concrete_location:
                links['log-visit'] = self.link_builder.build_action_link(
                    base_path, "visits", title="Log visit"
                )
            if scope.has_capability(Capability.DEACTIVATE_CLIENTS):
                links['deactivate'] = self.link_builder.build_action_link(
                    base_path, "deactivate", title="Deactivate client"
                )

        if scope.has_capability(Capability.MERGE_CLIENTS) and not client.merged_into_id:
            links['merge'] = self.link_builder.build_action_link(
                base_path, "merge", title="Merge into another client"
            )
        if scope.has_capability(Capability.RECOUNT_CLIENTS) and scope.is_all_locations:
            links['recount'] = self.link_builder.build_action_link(
                base_path, "recount", title="Recount visits"
            )
        if client.merged_into_id:
            links['merged-into'] = self.link_builder.build_link(
                f"/api/clients/{client.merged_into_id}", title="Surviving client"
            )

        return links

    def build_visit_affordances(self, visit: Visit, scope: TenantScope) -> Dict[str, HalLink]:
        """Links for a visit."""
        base_path = f"/api/visits/{visit.id}"
        links = {
            'self': self.link_builder.build_self_link(base_path),
            'client': self.link_builder.build_link(f"/api/clients/{visit.client_id}", title="Client")
        }
        if scope.has_capability(Capability.EDIT_VISITS):
            links['edit'] = self.link_builder.build_link(
                base_path, method="PATCH", content_type="application/json", title="Correct visit"
            )
        return links


class HalResponseBuilder:
    """Main HAL response builder."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')
        self.link_builder = HalLinkBuilder(base_url)
        self.affordance_builder = AffordanceLinkBuilder(base_url)

    def build_resource_response(self, data: Dict[str, Any], links: Dict[str, HalLink]) -> Dict[str, Any]:
        """Attach ``_links`` to a resource body."""
        response = dict(data)
        response['_links'] = {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}
        return response

    def build_collection_response(
        self,
        items: List[Dict[str, Any]],
        collection_path: str,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build a HAL collection response."""
        params = {k: v for k, v in (query_params or {}).items() if v not in (None, "")}
        path = f"{collection_path}?{urlencode(params)}" if params else collection_path

        return {
            'total': len(items),
            '_links': {'self': self.link_builder.build_self_link(path).model_dump(exclude_none=True)},
            '_embedded': {
                'items': items
            }
        }

    def build_error_response(
        self,
        error_type: str,
        title: str,
        status: int,
        detail: str,
        instance: str,
        user_message: Optional[str] = None,
        validation_errors: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """Build RFC 7807 compliant error response with HAL links."""
        error_response = {
            'type': f"{PROBLEM_BASE_URL}{error_type}",
            'title': title,
            'status': status,
            'detail': detail,
            'instance': instance
        }

        if user_message:
            error_response['userMessage'] = user_message
        if validation_errors:
            error_response['errors'] = validation_errors

        links = {
            'help': self.link_builder.build_link(
                f"/docs/errors#{error_type}",
                title="Error documentation"
            )
        }

        if error_type == "validation-error":
            links['schema'] = self.link_builder.build_link(
                "/openapi/openapi.json",
                title="API schema"
            )

        error_response['_links'] = {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}
        return error_response


class HalFormatter:
    """High-level HAL formatter with convenience methods."""

    def __init__(self, base_url: str):
        self.builder = HalResponseBuilder(base_url)

    def format_client(self, client: Client, scope: TenantScope) -> Dict[str, Any]:
        """Format a client with HAL links."""
        return self.builder.build_resource_response(
            serialize(client),
            self.builder.affordance_builder.build_client_affordances(client, scope)
        )

    def format_client_collection(self, clients: List[Client], scope: TenantScope,
                                 filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.builder.build_collection_response(
            [self.format_client(client, scope) for client in clients],
            "/api/clients",
            filters
        )

    def format_visit(self, visit: Visit, scope: TenantScope) -> Dict[str, Any]:
        """Format a visit with HAL links."""
        return self.builder.build_resource_response(
            serialize(visit),
            self.builder.affordance_builder.build_visit_affordances(visit, scope)
        )

    def format_visit_collection(self, visits: List[Visit], scope: TenantScope,
                                filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.builder.build_collection_response(
            [self.format_visit(visit, scope) for visit in visits],
            "/api/visits",
            filters
        )

    def format_intake_result(self, result, scope: TenantScope) -> Dict[str, Any]:
        """
        Format an intake outcome.

        A dedupe match is returned under ``dedupeMatch`` with links for the
        staff decision: log against it, or resubmit with ``forceCreate``.
        """
        body: Dict[str, Any] = {
            'client': self.format_client(result.client, scope) if result.client else None,
            'dedupeMatch': self.format_client(result.dedupe_match, scope) if result.dedupe_match else None,
            'visit': self.format_visit(result.visit, scope) if result.visit else None
        }
        links = {'self': self.builder.link_builder.build_self_link("/api/clients")}
        if result.dedupe_match:
            links['create-anyway'] = self.builder.link_builder.build_link(
                "/api/clients", method="POST", content_type="application/json",
                title="Resubmit with forceCreate=true"
            )
        return self.builder.build_resource_response(body, links)

    def format_exception(self, error: CustomException, instance: str) -> Dict[str, Any]:
        """Format an application exception as a problem document."""
        return self.builder.build_error_response(
            error.error_type,
            _ERROR_TITLES.get(error.status_code, "Error"),
            error.status_code,
            error.message,
            instance,
            error.user_message,
            error.validation_errors if isinstance(error, ValidationException) else None
        )

    def format_http_error(self, error_type: str, title: str, status: int, detail: str,
                          instance: str) -> Dict[str, Any]:
        """Format a framework-level HTTP error."""
        return self.builder.build_error_response(error_type, title, status, detail, instance)


# Convenience function for creating HAL formatter
def create_hal_formatter(base_url: str) -> HalFormatter:
    """Create a HAL formatter instance."""
    return HalFormatter(base_url)
