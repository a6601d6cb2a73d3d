from django.conf import settings
from django.core.checks import Error, register

from .exceptions import ConfigurationError
from .sources import validate_source_url


@register()
def check_source_urls(app_configs, **kwargs):
    errors = []
    for check_id, name in (('countries.E001', 'COUNTRIES_API_URL'), ('countries.E002', 'EXCHANGE_API_URL')):
        try:
            validate_source_url(name, getattr(settings, name, None))
        except ConfigurationError as exc:
            errors.append(Error(str(exc), hint=f"Set {name} to an absolute http(s) URL.", id=check_id))
    return errors
