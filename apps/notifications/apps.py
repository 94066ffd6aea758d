from django.apps import AppConfig


class NotificationsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.notifications"
    verbose_name = "Notifications"

    def ready(self):
        from shared.application.message_bus import message_bus
        from apps.bookings.domain.events import BookingTransitioned

        from .handlers import notify_counterparty

        message_bus.register_event_handler(BookingTransitioned, notify_counterparty)
