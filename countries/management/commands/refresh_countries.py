from django.core.management.base import BaseCommand, CommandError

from countries.exceptions import RefreshError
from countries.services import get_synchronizer


class Command(BaseCommand):
    help = "Fetch both external sources and refresh the countries table."

    def handle(self, *args, **options):
        try:
            result = get_synchronizer().refresh()
        except RefreshError as exc:
            raise CommandError(f"Refresh failed: {exc}") from exc

        self.stdout.write(self.style.SUCCESS(
            f"Refreshed {result.accepted} countries "
            f"({result.rejected} rejected) at {result.run_at.isoformat()}"
        ))
