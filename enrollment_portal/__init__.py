"""Member Enrollment Portal - Backend.

Field volunteers submit enrollment forms on behalf of applicants; supervisors
review them; administrators manage accounts and watch database health.

Core concepts:
- Roles are ordered: volunteer < supervisor < team < admin.
- A submission starts pending and moves exactly once, to approved or rejected.
- The schema provisions itself at startup and can be re-run safely.

See README for setup and usage.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
