"""Helpdesk sources, keyed by the name used on the command line and in configs."""

from helpdesk_connector.sources.base import (
    ConnectorMissingCredentialError,
    HelpdeskSource,
    Resource,
)
from helpdesk_connector.sources.groove import GrooveSource
from helpdesk_connector.sources.helpscout import HelpScoutSource
from helpdesk_connector.sources.intercom import IntercomSource
from helpdesk_connector.sources.kayako import KayakoSource
from helpdesk_connector.sources.zendesk import ZendeskSource

SOURCES: dict[str, type[HelpdeskSource]] = {
    cls.name: cls
    for cls in (ZendeskSource, HelpScoutSource, KayakoSource, IntercomSource, GrooveSource)
}


def get_source(name: str) -> type[HelpdeskSource]:
    """
    Look up a source class by name.

    Raises:
        KeyError: If no source is registered under `name`
    """
    try:
        return SOURCES[name.lower()]
    except KeyError:
        known = ", ".join(sorted(SOURCES))
        raise KeyError(f"Unknown source '{name}' (expected one of: {known})") from None


__all__ = [
    "SOURCES",
    "get_source",
    "HelpdeskSource",
    "Resource",
    "ConnectorMissingCredentialError",
    "ZendeskSource",
    "HelpScoutSource",
    "KayakoSource",
    "IntercomSource",
    "GrooveSource",
]
