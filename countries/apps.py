from django.apps import AppConfig


class CountriesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'countries'

    def ready(self):
        from . import checks, services  # noqa: F401
