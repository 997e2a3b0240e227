"""auth/ -- Session lifecycle and role-based access control for SessionGate.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/. api/ and main.py import from auth/, not the
other way around. Only auth/dependencies.py may import fastapi.
"""
