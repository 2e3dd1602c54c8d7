"""
Tenants application.

Tenant membership value types and the resolver that selects an actor's
active tenant.
"""
