"""data/ -- Stored-procedure data access layer for ICT4Events.

Layer rule: data/ imports only stdlib + third-party libraries.
It does NOT import from api/, web/, auth/, or timeline/.
Repositories in auth/ and timeline/ import from data/, not the other way around.
"""
