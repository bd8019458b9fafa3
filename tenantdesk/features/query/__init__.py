"""
Declarative query compiler.

Turns untrusted filter/sort/pagination descriptors into SQLAlchemy conditions,
always AND-combined with the caller's tenant scope.
"""
