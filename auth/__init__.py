"""auth/ -- Authentication package for ICT4Events.

Layer rule: auth/ imports from data/ and core/ plus third-party libraries.
It does NOT import from api/, web/, or timeline/.
api/ and web/ import from auth/, not the other way around.
"""
