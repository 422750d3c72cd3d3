from . import courses, enrollments, payments, profiles, site_settings

__all__ = ["courses", "enrollments", "payments", "profiles", "site_settings"]
