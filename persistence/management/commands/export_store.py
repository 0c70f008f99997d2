import json

from django.core.management.base import BaseCommand

from persistence.container import get_container
from persistence.services.transfer import export_document


class Command(BaseCommand):
    help = "Write the whole local store as one JSON export document."

    def add_arguments(self, parser):
        parser.add_argument('--output', '-o', help='File to write; defaults to stdout')

    def handle(self, *args, **options):
        document = export_document(get_container().engine)
        text = json.dumps(document, ensure_ascii=False, indent=2)
        path = options.get('output')
        if not path:
            self.stdout.write(text)
            return
        with open(path, 'w', encoding='utf-8') as fh:
            fh.write(text)
        self.stdout.write(self.style.SUCCESS(f"Exported {len(document['data'])} keys to {path}"))
