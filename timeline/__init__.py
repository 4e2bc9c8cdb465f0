"""timeline/ -- Posts shown on the site timeline.

Layer rule: timeline/ imports from data/ plus third-party libraries.
It does NOT import from api/, web/, or auth/.
"""
