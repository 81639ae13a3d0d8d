"""Category extraction from raw assessment documents.

The collector emits one top-level key per category. Depending on the
collector version a category value is either the record list itself, a
single object, or a wrapper object carrying the records under ``Data``.
``extract_category`` normalizes all of them to a list of records, in this
precedence order:

1. wrapped: ``{"Data": [...]}`` or ``{"Data": {...}}``
2. list: ``[...]``
3. singleton object: ``{...}``
4. absent / null / empty → ``None`` (skip the category)
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class CategoryDefinition:
    """A category analyzed by the pipeline."""

    id: str
    name: str


# Declared analysis order; categories run strictly in this sequence
ANALYSIS_CATEGORIES = [
    CategoryDefinition("users", "Users"),
    CategoryDefinition("gpos", "GPOs"),
    CategoryDefinition("computers", "Computers"),
    CategoryDefinition("ous", "OUs"),
    CategoryDefinition("groups", "Groups"),
    CategoryDefinition("domains", "Domains"),
    CategoryDefinition("containers", "Containers"),
    CategoryDefinition("acls", "ACLs"),
    CategoryDefinition("cert_services", "CertServices"),
    CategoryDefinition("meta", "Meta"),
    CategoryDefinition("dc_health", "DCHealth"),
    CategoryDefinition("dns", "DNS"),
    CategoryDefinition("dhcp", "DHCP"),
    CategoryDefinition("security", "Security"),
    CategoryDefinition("kerberos", "Kerberos"),
    CategoryDefinition("sites", "Sites"),
    CategoryDefinition("fsmo_roles_health", "FSMORolesHealth"),
    CategoryDefinition("replication_health", "ReplicationHealthAllDCs"),
    CategoryDefinition("lingering_objects_risk", "LingeringObjectsRisk"),
    CategoryDefinition("trust_health", "TrustHealth"),
    CategoryDefinition("orphaned_trusts", "OrphanedTrusts"),
    CategoryDefinition("dns_root_hints", "DNSRootHints"),
    CategoryDefinition("dns_conflicts", "DNSConflicts"),
    CategoryDefinition("dns_scavenging", "DNSScavengingDetailed"),
    CategoryDefinition("dhcp_rogue_servers", "DHCPRogueServers"),
    CategoryDefinition("dhcp_options_audit", "DHCPOptionsAudit"),
]

CATEGORIES_BY_ID = {c.id: c for c in ANALYSIS_CATEGORIES}


def find_category_key(document: dict, category_name: str) -> Optional[str]:
    """Return the document key matching ``category_name`` case-insensitively."""
    wanted = category_name.lower()
    for key in document:
        if isinstance(key, str) and key.lower() == wanted:
            return key
    return None


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (list, dict, str)) and len(value) == 0)


def extract_category(document: dict, category_name: str) -> Optional[list[dict]]:
    """Locate a category in the document and normalize it to a record list.

    Returns ``None`` when the category is missing or carries no data.
    """
    if not isinstance(document, dict):
        return None

    key = find_category_key(document, category_name)
    if key is None:
        return None

    value = document[key]
    if _is_empty(value):
        return None

    if isinstance(value, dict) and "Data" in value:
        data = value["Data"]
        if _is_empty(data):
            return None
        records = data if isinstance(data, list) else [data]
    elif isinstance(value, list):
        records = value
    elif isinstance(value, dict):
        records = [value]
    else:
        return None

    return records or None
