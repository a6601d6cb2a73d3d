import tempfile
from io import StringIO
from unittest import mock

import requests
from django.core.management import CommandError, call_command
from django.test import SimpleTestCase, TestCase, override_settings

from countries.checks import check_source_urls
from countries.models import Country

from .fakes import COUNTRIES_URL, RATES_URL, country, fake_get


class RefreshCommandTests(TestCase):

    def setUp(self):
        cache = tempfile.TemporaryDirectory()
        self.addCleanup(cache.cleanup)
        settings_override = override_settings(
            COUNTRIES_API_URL=COUNTRIES_URL,
            EXCHANGE_API_URL=RATES_URL,
            SUMMARY_CACHE_DIR=cache.name,
        )
        settings_override.enable()
        self.addCleanup(settings_override.disable)

    @mock.patch('countries.sources.requests.get')
    def test_refresh_command(self, mock_get):
        mock_get.side_effect = fake_get(
            [country("Mockland"), country("Nopop", population=0)], {"rates": {"USD": 1.0}}
        )
        out = StringIO()

        call_command('refresh_countries', stdout=out)

        self.assertIn("Refreshed 1 countries (1 rejected)", out.getvalue())
        self.assertTrue(Country.objects.filter(name_key="mockland").exists())

    @mock.patch('countries.sources.requests.get', side_effect=requests.exceptions.ConnectionError("down"))
    def test_refresh_command_fails_on_unavailable_source(self, mock_get):
        with self.assertRaises(CommandError):
            call_command('refresh_countries', stdout=StringIO())
        self.assertFalse(Country.objects.exists())


class SourceUrlCheckTests(SimpleTestCase):

    @override_settings(COUNTRIES_API_URL=COUNTRIES_URL, EXCHANGE_API_URL=RATES_URL)
    def test_valid_urls_pass(self):
        self.assertEqual(check_source_urls(None), [])

    @override_settings(COUNTRIES_API_URL="", EXCHANGE_API_URL="restcountries")
    def test_invalid_urls_are_reported(self):
        errors = check_source_urls(None)
        self.assertEqual([e.id for e in errors], ['countries.E001', 'countries.E002'])
