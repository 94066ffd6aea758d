from django.apps import AppConfig


class FinancesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.finances"
    verbose_name = "Finances"

    def ready(self):
        from shared.application.message_bus import message_bus
        from apps.bookings.domain.events import SettlementRequested

        from .handlers import enqueue_settlement

        message_bus.register_event_handler(SettlementRequested, enqueue_settlement)
