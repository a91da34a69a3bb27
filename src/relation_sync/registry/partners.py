"""Partner identity lookup injected into the registry adapters."""

from collections.abc import Mapping


class UnknownPartnerError(LookupError):
    """Raised when a partner handle has no known BPNL."""


class StaticPartnerDirectory:
    """PartnerDirectory backed by a fixed partner handle -> BPNL mapping.

    Built once at startup from configuration and passed to the adapters, so
    there is no lazily populated global lookup.
    """

    def __init__(self, partners: Mapping[str, str]):
        self._partners = dict(partners)

    def bpnl_of(self, partner_id: str) -> str:
        try:
            return self._partners[partner_id]
        except KeyError:
            raise UnknownPartnerError(f"No BPNL known for partner {partner_id}") from None

    def __len__(self) -> int:
        return len(self._partners)
