"""todo/ -- Projects, sections, tasks, shares and the access resolver.

Layer rule: todo/ may import from core/ and auth/models.py (for Principal).
It does NOT import from api/ or cache/.
"""
