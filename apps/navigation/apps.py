from django.apps import AppConfig


class NavigationConfig(AppConfig):
    name = 'apps.navigation'
    verbose_name = 'Navigation'
