"""teams/ -- Team management persistence.

Layer rule: teams/ imports only stdlib and third-party libraries.
It does NOT import from api/ or auth/.
"""
