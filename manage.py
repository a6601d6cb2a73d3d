#!/usr/bin/env python
"""Django's command-line utility for administrative tasks."""
import os
import sys


def main():
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'countries_analyzer.settings')
    from django.core.management import execute_from_command_line

    argv = list(sys.argv)
    # `runserver` with no address listens on $PORT.
    if argv[1:2] == ['runserver'] and not any(not arg.startswith('-') for arg in argv[2:]):
        argv.append(f"0.0.0.0:{os.environ.get('PORT', '8000')}")
    execute_from_command_line(argv)


if __name__ == '__main__':
    main()
