"""Select the telephony provider from configuration."""
import logging

from frontdesk.core.config import Settings
from frontdesk.core.errors import ConfigurationError
from frontdesk.services.telephony.base import TelephonyProvider
from frontdesk.services.telephony.signalwire import SignalWireProvider
from frontdesk.services.telephony.swireit import SwireitProvider

logger = logging.getLogger(__name__)

PROVIDERS = {
    SwireitProvider.name: SwireitProvider,
    SignalWireProvider.name: SignalWireProvider,
}


def create_telephony_provider(settings: Settings) -> TelephonyProvider:
    """Build the provider named by TELEPHONY_PROVIDER."""
    name = (settings.telephony_provider or "").strip().lower()
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        raise ConfigurationError(
            f"Unknown telephony provider '{settings.telephony_provider}'. "
            f"Expected one of: {', '.join(sorted(PROVIDERS))}"
        )

    provider = provider_cls(
        project_id=settings.swireit_project_id,
        api_token=settings.swireit_api_token,
        space_url=settings.swireit_space_url,
        timeout=settings.telephony_timeout_seconds,
    )
    if not provider.is_configured:
        logger.warning(
            "Telephony credentials are not configured. Set SWIREIT_PROJECT_ID, "
            "SWIREIT_API_TOKEN, and SWIREIT_SPACE_URL."
        )
    return provider
