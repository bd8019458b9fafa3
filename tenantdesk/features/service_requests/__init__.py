"""
Service request feature module: the tenant-scoped business subject.
"""
