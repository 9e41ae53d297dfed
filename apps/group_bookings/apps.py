from django.apps import AppConfig


class GroupBookingsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.group_bookings"
    verbose_name = "Group bookings"

    def ready(self) -> None:
        from shared.application.message_bus import message_bus

        from . import handlers
        from .application import command_handlers

        command_handlers.register_handlers(message_bus)
        handlers.register_handlers(message_bus)
