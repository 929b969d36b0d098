"""
RBAC (Role-Based Access Control) application.

Decides whether a subject may perform an action on a field operations
resource, combining:
- Role permissions with a hierarchy and a top-level wildcard
- Geographic boundaries (local, regional, national) and privileged
  cross-boundary roles
- Direct and team resource assignments
- A generation-invalidated decision cache
- An append-only audit trail of every decision
"""
