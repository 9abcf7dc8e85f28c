"""MongoDB access for the Community Microhelp API."""

from community_microhelp.database.manager import DatabaseManager
from community_microhelp.database.tenant_collection import TenantAwareCollection

__all__ = ["DatabaseManager", "TenantAwareCollection"]
