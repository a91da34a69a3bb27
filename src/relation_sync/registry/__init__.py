"""HTTP adapters for the twin registry and the partner identifier resolver."""

from relation_sync.registry.dtr_client import DtrClient
from relation_sync.registry.part_type_client import PartTypeInformationClient
from relation_sync.registry.partners import StaticPartnerDirectory, UnknownPartnerError

__all__ = [
    "DtrClient",
    "PartTypeInformationClient",
    "StaticPartnerDirectory",
    "UnknownPartnerError",
]
