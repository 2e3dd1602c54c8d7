"""
Management command to inspect or purge an actor's persisted authorization
snapshots.
"""
import json

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from apps.core.cache import snapshot_cache_alias
from apps.rbac.snapshots import SnapshotStore


class Command(BaseCommand):
    help = "List or purge an actor's persisted authorization snapshots"

    def add_arguments(self, parser):
        parser.add_argument('actor_id', type=str, help='Actor whose snapshots to inspect')
        parser.add_argument(
            '--purge',
            action='store_true',
            help='Remove every persisted snapshot and the active tenant for the actor',
        )
        parser.add_argument(
            '--format',
            choices=['table', 'json'],
            default='table',
            help='Output format (default: table)'
        )

    def handle(self, *args, **options):
        actor_id = options['actor_id'].strip()
        if not actor_id:
            raise CommandError('actor_id must not be empty')

        store = SnapshotStore()

        if options['purge']:
            removed = async_to_sync(store.purge)(actor_id)
            self.stdout.write(
                self.style.SUCCESS(f'Purged {removed} snapshot(s) for actor {actor_id}')
            )
            return

        snapshots = async_to_sync(store.load_all)(actor_id)
        active_tenant = async_to_sync(store.load_active_tenant)(actor_id)

        if options['format'] == 'json':
            self.stdout.write(json.dumps({
                'actor_id': actor_id,
                'active_tenant_id': active_tenant,
                'snapshots': [snapshot.to_payload() for snapshot in snapshots],
            }, indent=2))
            return

        self.stdout.write(f"Cache alias: {snapshot_cache_alias()}")
        self.stdout.write(f"Actor: {actor_id}")
        self.stdout.write(f"Active tenant: {active_tenant or '-'}")
        self.stdout.write('=' * 50)

        if not snapshots:
            self.stdout.write(self.style.WARNING('No persisted snapshots'))
            return

        now = timezone.now()
        for snapshot in snapshots:
            marker = '*' if snapshot.tenant_id == active_tenant else ' '
            age = int(snapshot.age(now).total_seconds())
            member = 'member' if snapshot.is_member else 'not a member'
            self.stdout.write(
                f"{marker} {snapshot.tenant_id}  {member}  "
                f"{snapshot.permission_count} grant(s)  fetched {age}s ago"
            )
            for code in sorted(code.value for code in snapshot.granted_permission_codes):
                self.stdout.write(f"      {code}")
