from dataclasses import dataclass

from django.conf import settings

from .exceptions import ConfigurationError
from .models import AppSettings


@dataclass(frozen=True)
class SyncConfig:
    finale_api_key: str = ''
    finale_api_secret: str = ''
    finale_account_path: str = ''
    inventory_report_url: str = ''
    sync_enabled: bool = True
    email_alerts_enabled: bool = False
    alert_recipients: tuple = ()
    email_api_key: str = ''
    settings_found: bool = False

    @property
    def has_finale_credentials(self):
        return bool(self.finale_api_key and self.finale_api_secret and self.finale_account_path)

    @property
    def alerts_enabled(self):
        return self.email_alerts_enabled and bool(self.alert_recipients)

    def require_finale(self):
        if not self.settings_found and not self.has_finale_credentials:
            raise ConfigurationError("Settings have not been saved yet; Finale credentials are missing")
        if not self.sync_enabled:
            raise ConfigurationError("Sync is disabled in settings")
        if not self.has_finale_credentials:
            raise ConfigurationError("Finale API key, secret and account path are required")
        return self


def load_sync_config():
    """Read the settings row fresh; environment values fill in blank fields."""
    row = AppSettings.load()

    def pick(field, fallback):
        value = getattr(row, field, '') if row is not None else ''
        return value or fallback

    recipients = row.recipients if row is not None else []
    return SyncConfig(
        finale_api_key=pick('finale_api_key', settings.FINALE_API_KEY),
        finale_api_secret=pick('finale_api_secret', settings.FINALE_API_SECRET),
        finale_account_path=pick('finale_account_path', settings.FINALE_ACCOUNT_PATH),
        inventory_report_url=pick('inventory_report_url', settings.FINALE_INVENTORY_REPORT_URL),
        sync_enabled=row.sync_enabled if row is not None else True,
        email_alerts_enabled=row.email_alerts_enabled if row is not None else bool(settings.ALERT_EMAILS),
        alert_recipients=tuple(recipients or settings.ALERT_EMAILS),
        email_api_key=pick('email_api_key', settings.EMAIL_HOST_PASSWORD),
        settings_found=row is not None,
    )
