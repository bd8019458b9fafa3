"""
Permission feature module.

Static statement catalog and role definitions, the capability resolver that
merges system and organization roles, and the client-side permission cache.
"""
