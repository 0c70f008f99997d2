import json

from django.core.management.base import BaseCommand, CommandError

from persistence.container import get_container
from persistence.exceptions import StorageError
from persistence.services.transfer import import_document


class Command(BaseCommand):
    help = "Replace tables with the contents of an export document. A backup is taken first."

    def add_arguments(self, parser):
        parser.add_argument('path', help='Export document produced by export_store')

    def handle(self, *args, **options):
        try:
            with open(options['path'], encoding='utf-8') as fh:
                document = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise CommandError(f"Cannot read {options['path']}: {exc}") from exc
        try:
            written = import_document(get_container().engine, document)
        except StorageError as exc:
            raise CommandError(f"Import failed, previous data restored: {exc}") from exc
        self.stdout.write(self.style.SUCCESS(f"Imported {len(written)} tables: {', '.join(written)}"))
