"""Voice markup (TwiML/LaML compatible XML) builder."""
from typing import Any, Dict, List, Optional

XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'


def escape_xml(value: Any) -> str:
    """Escape XML special characters."""
    return (
        str(value)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def render_attributes(attributes: Dict[str, Any]) -> str:
    """Render attributes in insertion order, skipping None values."""
    parts = []
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        parts.append(f' {key}="{escape_xml(value)}"')
    return "".join(parts)


class Gather:
    """Nested <Gather> verb; only <Say> is allowed inside."""

    def __init__(self, attributes: Dict[str, Any]):
        self.attributes = attributes
        self._children: List[str] = []

    def say(self, text: Optional[str]) -> "Gather":
        if text:
            self._children.append(f"<Say>{escape_xml(text)}</Say>")
        return self

    def render(self) -> str:
        return f"<Gather{render_attributes(self.attributes)}>{''.join(self._children)}</Gather>"


class VoiceResponse:
    """Builds the markup returned to the telephony provider."""

    def __init__(self):
        self._verbs: List[Any] = []

    def say(self, text: Optional[str]) -> "VoiceResponse":
        if text:
            self._verbs.append(f"<Say>{escape_xml(text)}</Say>")
        return self

    def gather(
        self,
        action: str,
        input: str = "speech",
        method: str = "POST",
        speech_timeout: str = "auto",
        language: str = "en-US",
        hints: Optional[str] = None,
        num_digits: Optional[int] = None,
    ) -> Gather:
        gather = Gather(
            {
                "input": input,
                "action": action,
                "method": method,
                "speechTimeout": speech_timeout,
                "language": language,
                "hints": hints,
                "numDigits": num_digits,
            }
        )
        self._verbs.append(gather)
        return gather

    def dial(self, number: str) -> "VoiceResponse":
        self._verbs.append(f"<Dial>{escape_xml(number)}</Dial>")
        return self

    def record(self, max_length: Optional[int] = None, action: Optional[str] = None) -> "VoiceResponse":
        self._verbs.append(f"<Record{render_attributes({'maxLength': max_length, 'action': action})} />")
        return self

    def pause(self, length: int) -> "VoiceResponse":
        self._verbs.append(f"<Pause{render_attributes({'length': length})} />")
        return self

    def redirect(self, url: Optional[str], method: str = "POST") -> "VoiceResponse":
        if url:
            self._verbs.append(f"<Redirect{render_attributes({'method': method})}>{escape_xml(url)}</Redirect>")
        return self

    def hangup(self) -> "VoiceResponse":
        self._verbs.append("<Hangup />")
        return self

    def reject(self, reason: str = "rejected") -> "VoiceResponse":
        self._verbs.append(f"<Reject{render_attributes({'reason': reason})} />")
        return self

    def to_xml(self) -> str:
        rendered = "".join(
            verb.render() if isinstance(verb, Gather) else verb for verb in self._verbs
        )
        return f"{XML_HEADER}<Response>{rendered}</Response>"

    def __str__(self) -> str:
        return self.to_xml()
