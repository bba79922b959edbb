"""auth/ -- Credential and token lifecycle for authgate.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/.
api/ and the CLI import from auth/, not the other way around.
"""
