"""auth/ -- Session authentication and role policy for the parts catalog.

Layer rule: auth/ imports stdlib, third-party libraries and core/ only.
It does NOT import from api/ or catalog/.
api/ imports from auth/, not the other way around.
"""
