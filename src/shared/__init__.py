"""Shared cross-domain components.

- Exception classes for consistent error responses
- The permission engine and route guards for broker-scoped RBAC
"""
