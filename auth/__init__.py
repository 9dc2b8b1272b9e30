"""auth/ -- Authentication and authorization package for Lanterra.

Domain models, the user/token store, JWT and password helpers, the
AuthService token lifecycle, and the FastAPI guards built on them.

Layer rule: auth/ does not import from api/. api/ imports from auth/,
not the other way around.
"""
