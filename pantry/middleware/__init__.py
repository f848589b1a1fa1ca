# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

Bearer-token scope resolution and RFC 7807 error rendering.
"""
