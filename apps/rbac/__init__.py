"""
RBAC (Role-Based Access Control) application.

Provides tenant-scoped authorization with:
- A static role registry of screens, actions and features
- Granular per-tenant permission grants with default capabilities
- A single-flight, TTL-bound authorization cache with durable snapshots
- Synchronous permission evaluation and navigation filtering
"""
