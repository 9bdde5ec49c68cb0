"""auth/ -- Identity, sessions, and authorization snapshots for orgguard.

Layer rule: auth/ imports from core/ and third-party libraries. store, models,
tokens and resolver do not import from api/, cache/, or rbac/; sessions.py
composes the store with cache/ to serve the request path.
api/ imports from auth/, not the other way around.
"""
