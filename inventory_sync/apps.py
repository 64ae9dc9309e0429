from django.apps import AppConfig


class InventorySyncConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'inventory_sync'
    verbose_name = 'Finale inventory sync'

    def ready(self):
        from . import notifier  # noqa: F401  connects signal receivers
