"""
Authorization engine app configuration.
"""
from django.apps import AppConfig


class RbacConfig(AppConfig):
    name = 'apps.rbac'
    verbose_name = 'Authorization (roles, grants, evaluation)'

    def ready(self):
        """Connect the audit receivers."""
        import apps.rbac.signals  # noqa
