from django.core.management.base import BaseCommand, CommandError

from persistence.container import get_container
from persistence.exceptions import StorageError


class Command(BaseCommand):
    help = "Snapshot every table into the backup key, or restore the last snapshot."

    def add_arguments(self, parser):
        parser.add_argument('--restore', action='store_true', help='Restore tables from the last backup instead')

    def handle(self, *args, **options):
        engine = get_container().engine
        if options['restore']:
            try:
                engine.restore_from_backup()
            except StorageError as exc:
                raise CommandError(f"Restore failed: {exc}") from exc
            restored = engine.get_metadata().get('lastRestore')
            self.stdout.write(self.style.SUCCESS(f"Restored backup taken at {restored}"))
            return

        snapshot = engine.create_backup()
        if snapshot is None:
            raise CommandError("Backup failed; see the log for details")
        self.stdout.write(self.style.SUCCESS(
            f"Backed up {len(snapshot['data'])} tables at {snapshot['timestamp']}"
        ))
