"""auth/ -- Authentication and authorization package for CodeCoach.

Layer rule: auth/ imports from core/, directory/ and third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way
around (auth/dependencies.py only touches fastapi itself).
"""
