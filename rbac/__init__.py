"""rbac/ -- Role administration, delegation guard, policy versioning, and audit.

Layer rule: rbac/ imports from core/, auth/, and cache/. It never imports
from api/.
"""
