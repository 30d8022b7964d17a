from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.core.cache import cache
from django.core.management.base import BaseCommand
from django.utils import timezone

from flow.services import coordinator, resources
from flow.services.cache import BED_SUMMARY_KEY, DEPARTMENTS_KEY, WARDS_KEY
from flow.services.notifications import UPDATES_GROUP


class Command(BaseCommand):
    help = "Warm the dashboard aggregate caches; broadcast a WebSocket refresh event."

    def add_arguments(self, parser):
        parser.add_argument('--ttl', type=int, default=None,
                            help='Seconds to keep the warmed values (default: FLOW_AGGREGATE_CACHE_SECONDS)')

    def handle(self, *args, **options):
        now = timezone.now()
        ttl = options['ttl'] if options['ttl'] is not None else settings.FLOW_AGGREGATE_CACHE_SECONDS
        builders = {
            BED_SUMMARY_KEY: resources.summary,
            WARDS_KEY: coordinator.ward_breakdown,
            DEPARTMENTS_KEY: coordinator.department_breakdown,
        }
        keys_refreshed = []
        for key, build in builders.items():
            if ttl > 0:
                cache.set(key, build(), ttl)
            else:
                cache.delete(key)
            keys_refreshed.append(key)

        channel_layer = get_channel_layer()
        if channel_layer is not None:
            event = {"type": "broadcast.refresh", "version": int(now.timestamp()), "ts": now.isoformat(),
                     "keys": keys_refreshed}
            async_to_sync(channel_layer.group_send)(UPDATES_GROUP, event)

        self.stdout.write(self.style.SUCCESS(f"Refreshed {len(keys_refreshed)} keys at {now}"))
