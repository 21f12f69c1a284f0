from __future__ import annotations

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from modules.orders.factories import build_order_service, register_consumers
from shared.infrastructure.bus import KombuEventBus


class Command(BaseCommand):
    help = "Consume domain events from the broker and dispatch them to handlers."

    def add_arguments(self, parser):
        parser.add_argument(
            "--poll-timeout",
            type=float,
            default=1.0,
            help="Seconds to wait for a message before polling again.",
        )

    def handle(self, *args, **options):
        if not settings.EVENT_BUS_URL:
            raise CommandError("EVENT_BUS_URL is not configured.")

        bus = KombuEventBus(
            settings.EVENT_BUS_URL,
            exchange_name=settings.EVENT_EXCHANGE,
            service_name=settings.SERVICE_NAME,
        )
        register_consumers(bus, build_order_service(event_bus=bus))
        if not bus.connect():
            raise CommandError(f"Could not connect to {settings.EVENT_EXCHANGE}.")

        self.stdout.write(
            self.style.SUCCESS(f"Consuming from exchange {settings.EVENT_EXCHANGE}...")
        )
        try:
            bus.run(poll_timeout=options["poll_timeout"])
        except KeyboardInterrupt:
            self.stdout.write("Stopping consumer.")
        finally:
            bus.close()
