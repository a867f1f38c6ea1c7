"""State layer.

Holds the named, role-specific state machine and the durable store that
remembers which state was last applied, so a restarted device resumes
where it left off.
"""
