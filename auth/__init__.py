"""auth/ -- Authentication, session and credential package for TaskTrack.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/, todo/, or cache/.
api/ imports from auth/, not the other way around.
"""
