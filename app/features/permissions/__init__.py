"""
Organization permission feature module.

Role-based access control scoped to one organization: a fixed role to
permission matrix, per-membership overrides, and route guards.
"""
