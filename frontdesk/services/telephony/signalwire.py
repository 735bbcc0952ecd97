"""SignalWire compatibility (LaML/TwiML) provider built on the signalwire SDK."""
import asyncio
import logging
from typing import Any, Mapping, Optional

from signalwire.request_validator import RequestValidator
from signalwire.rest import Client as SignalWireClient
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.http.http_client import TwilioHttpClient

from frontdesk.core.errors import ConfigurationError, TelephonyError
from frontdesk.services.telephony.base import TelephonyProvider

logger = logging.getLogger(__name__)


class SignalWireProvider(TelephonyProvider):
    """Talks to the Twilio-compatible REST API of a SignalWire space."""

    name = "signalwire"
    signature_headers = ("x-signalwire-signature", "x-twilio-signature")

    def __init__(
        self,
        project_id: Optional[str],
        api_token: Optional[str],
        space_url: Optional[str],
        timeout: float = 10.0,
        client: Optional[Any] = None,
    ):
        super().__init__(api_token)
        self.project_id = project_id
        if space_url:
            space_url = space_url.replace("https://", "").replace("http://", "").rstrip("/")
        self.space_url = space_url or None
        self.timeout = timeout
        self._client = client
        self._validator = RequestValidator(api_token) if api_token else None

    @property
    def is_configured(self) -> bool:
        return bool(self.project_id and self.api_token and self.space_url)

    @property
    def client(self):
        if self._client is None:
            if not self.is_configured:
                raise ConfigurationError("SignalWire credentials not configured")
            self._client = SignalWireClient(
                self.project_id,
                self.api_token,
                signalwire_space_url=self.space_url,
                http_client=TwilioHttpClient(timeout=self.timeout),
            )
        return self._client

    def validate_signature(
        self, url: str, params: Optional[Mapping[str, Any]], signature: Optional[str]
    ) -> bool:
        if self._validator is None or not signature or not url:
            return False
        return self._validator.validate(url, dict(params or {}), signature)

    async def create_outbound_call(self, to: str, from_: Optional[str], url: str) -> str:
        client = self.client
        call = await self._call_api(lambda: client.calls.create(to=to, from_=from_, url=url))
        if not getattr(call, "sid", None):
            raise TelephonyError("SignalWire API response did not include a call sid")
        return str(call.sid)

    async def update_call(self, call_id: str, markup: str) -> None:
        client = self.client
        await self._call_api(lambda: client.calls(call_id).update(twiml=markup), call_id)

    async def _call_api(self, operation, call_id: Optional[str] = None):
        """Run a blocking SDK request off the event loop and map its errors."""
        try:
            return await asyncio.to_thread(operation)
        except TwilioRestException as e:
            logger.error(
                f"[SIGNALWIRE] API error - Status: {e.status}, CallId: {call_id or 'n/a'}"
            )
            raise TelephonyError(f"SignalWire API error: {e.status}", call_id) from e
        except (TwilioException, OSError) as e:
            raise TelephonyError(f"SignalWire API request failed: {type(e).__name__}", call_id) from e
