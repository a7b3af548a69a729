"""modvault: role-gated file repository core."""

from .config import AppConfig, load_config
from .errors import ErrorKind, VaultError
from .identity import ConfiguredIdentityProvider, IdentityProvider
from .policy import Operation, authorize
from .schemas import ItemMetadata, ItemRecord, Principal, PublicItemView, Role
from .vault import ConsistencyReport, ItemContent, ItemVault

__all__ = [
    "AppConfig",
    "ConfiguredIdentityProvider",
    "ConsistencyReport",
    "ErrorKind",
    "IdentityProvider",
    "ItemContent",
    "ItemMetadata",
    "ItemRecord",
    "ItemVault",
    "Operation",
    "Principal",
    "PublicItemView",
    "Role",
    "VaultError",
    "authorize",
    "load_config",
]
