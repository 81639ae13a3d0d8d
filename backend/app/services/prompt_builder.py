"""Prompt construction for category analysis.

Each request is: category instructions, a size-bounded JSON excerpt of the
records, and (for Users/Computers) counts pre-computed in Python, which the
model is told to treat as authoritative. The shared ``SYSTEM_PROMPT`` fixes
the output schema and the evidence rule.
"""

import json
from datetime import datetime
from typing import Optional

from app.services.category_extractor import CategoryDefinition
from app.services.sampler import aggregate_computer_stats, aggregate_user_stats

SYSTEM_PROMPT = """You are a senior Active Directory security analyst (CISSP, OSCP) \
performing a compliance-grade audit.

CORE RULES:
1. ZERO TOLERANCE FOR SPECULATION: only report problems that exist and can be \
verified in the supplied data.
2. EVIDENCE FIRST: a finding requires a count greater than zero AND real object \
identifiers taken from the data. Missing or empty data is never a problem.
3. RELEVANT COMMANDS: every PowerShell command must address the specific problem.
4. QUALITY OVER QUANTITY: three solid findings beat ten vague ones.

If the data does not clearly show a problem, return {"findings": []}.

Respond with JSON only, no prose, in exactly this shape:
{
  "findings": [
    {
      "type_id": "CONSTANT_UPPER_SNAKE_ID (e.g. PASSWORD_NEVER_EXPIRES)",
      "title": "Specific title starting with the number of affected objects",
      "severity": "critical|high|medium|low",
      "description": "Technical description",
      "recommendation": "Executable remediation steps",
      "mitre_attack": "T1558.003 - Kerberoasting",
      "cis_control": "5.2.1 - specific CIS control",
      "impact_business": "Financial, regulatory or reputational impact",
      "remediation_commands": "Copy-paste ready PowerShell using real object names",
      "prerequisites": "What to prepare before remediating",
      "operational_impact": "Production impact of the fix",
      "microsoft_docs": "https://learn.microsoft.com/...",
      "current_vs_recommended": "Current: X | Recommended: Y",
      "timeline": "24h | 7d | 30d | 60d | 90d",
      "affected_count": 15,
      "evidence": {
        "affected_objects": ["name1", "name2"],
        "count": 15,
        "details": "Specific technical details"
      }
    }
  ]
}"""

_DEFAULT_INSTRUCTION = (
    "Analyze this {name} data from Active Directory for security "
    "misconfigurations and operational risks. Report only issues backed by "
    "concrete values present in the records."
)

CATEGORY_INSTRUCTIONS: dict[str, str] = {
    "users": """Analyze these Active Directory user accounts. Each JSON object is one user.
Iterate over EVERY user, check each condition below and COUNT matching users.
affected_objects must contain real SamAccountName values from the data.

Look for (only with evidence):
1. Passwords that never expire (PasswordNeverExpires=true AND Enabled=true) - CIS 5.2.1.
2. Excessive privileged accounts (AdminCount=1 or privileged group membership).
3. Enabled accounts inactive for more than 90 days (LastLogonDate).
4. Kerberoastable accounts (ServicePrincipalNames present) - MITRE T1558.003.
5. AS-REP roastable accounts (DoesNotRequirePreAuth=true) - MITRE T1558.004.
6. Unconstrained delegation on user accounts (TrustedForDelegation=true).
7. Passwords not required (PasswordNotRequired=true AND Enabled=true).
8. Kerberos token bloat (EstimatedTokenSize > 12000).
Disabled accounts never count toward password or inactivity findings.""",
    "gpos": """Analyze these Group Policy Objects for insecure configuration.
Only report GPOs present in the data with verifiable problematic values.
If "cpassword" is null or absent, do NOT report Group Policy Preferences passwords.
Use GPO-specific cmdlets (Get-GPO, Get-GPOReport, Set-GPPermission).

Look for:
1. Unlinked or fully disabled GPOs (empty Links, GpoStatus AllSettingsDisabled).
2. Dangerous permissions (Authenticated Users or Everyone with edit rights).
3. Stored cpassword values (MS14-025).
4. Default domain policies modified with weak settings.""",
    "computers": """Analyze these Active Directory computer accounts.
affected_objects must be real computer names from the data.

Look for:
1. Obsolete operating systems (Windows Server 2003/2008/2012, Windows XP/7/8).
2. Enabled computers inactive for more than 90 days (LastLogonDate).
3. Unconstrained delegation on non-DC computers (TrustedForDelegation=true).
4. Missing LAPS where the data exposes it.""",
    "groups": """Audit privileged group membership and group hygiene.
Look for: oversized Domain Admins / Enterprise Admins / Schema Admins,
nested groups inside privileged groups, empty privileged groups with
delegated rights, and members that are disabled or stale accounts.""",
    "dc_health": """Analyze the health and security of domain controllers.
Look for: failing services, obsolete DC operating systems, low disk space,
time synchronization problems, and SMBv1 or LDAP signing disabled.""",
    "dns": """Analyze DNS infrastructure configuration.
Look for: zones allowing nonsecure dynamic updates, unrestricted zone
transfers, missing scavenging, and forwarders pointing to unexpected hosts.""",
    "dhcp": """Analyze DHCP servers and scopes.
Look for: unauthorized servers, scopes near exhaustion, missing DNS
dynamic update credentials, and audit logging disabled.""",
    "security": """Analyze domain-wide security settings and legacy protocols.
Look for: NTLMv1 or LM allowed, SMB signing not required, LDAP signing or
channel binding not enforced, weak password policy values, and missing
audit policy categories.""",
    "kerberos": """Analyze Kerberos configuration.
Look for: krbtgt password older than 180 days, RC4/DES encryption allowed,
unconstrained or resource-based delegation abuse paths, and excessive
ticket lifetimes.""",
    "sites": """Analyze AD sites and replication topology design.
Look for: subnets not assigned to sites, sites without domain controllers,
and site links with excessive replication intervals.""",
    "cert_services": """Analyze Active Directory Certificate Services.
Look for vulnerable certificate templates (ESC1-ESC8): enrollee-supplied
subjects with client authentication, overly broad enrollment rights, and
EDITF_ATTRIBUTESUBJECTALTNAME2 on CAs.""",
    "replication_health": """Analyze replication health across all domain controllers.
Look for: replication failures, partners with last success older than 24
hours, and USN rollback indicators.""",
    "fsmo_roles_health": """Analyze FSMO role placement and health.
Look for: roles held by unreachable or offline DCs and all roles placed
on a single DC without a documented reason.""",
    "lingering_objects_risk": """Analyze lingering object risk.
Look for: DCs offline longer than the tombstone lifetime and strict
replication consistency disabled.""",
    "trust_health": """Analyze trust relationships.
Look for: trusts without SID filtering, bidirectional external trusts,
and trusts failing validation.""",
    "orphaned_trusts": """Analyze orphaned trusts pointing at domains that no longer resolve.
Report each orphaned trust by name.""",
    "dns_root_hints": """Analyze DNS root hints.
Look for outdated or missing root hint servers.""",
    "dns_conflicts": """Analyze DNS record conflicts.
Look for duplicate A/PTR records and records pointing at decommissioned hosts.""",
    "dns_scavenging": """Analyze DNS scavenging configuration in depth.
Look for zones with aging disabled and servers with scavenging off.""",
    "dhcp_rogue_servers": """Analyze unauthorized (rogue) DHCP servers.
Report every server answering offers that is not authorized in AD.""",
    "dhcp_options_audit": """Audit DHCP scope options.
Look for DNS servers or gateways pointing at unexpected addresses and
options that leak internal infrastructure.""",
}


def get_instruction(category: CategoryDefinition) -> str:
    return CATEGORY_INSTRUCTIONS.get(
        category.id, _DEFAULT_INSTRUCTION.format(name=category.name)
    )


def _format_stats(title: str, stats: dict) -> str:
    lines = [f"- {key.replace('_', ' ')}: {value}" for key, value in stats.items()]
    return f"{title}\n" + "\n".join(lines)


def chunk_statistics(
    category: CategoryDefinition, records: list[dict], now: Optional[datetime] = None
) -> Optional[dict]:
    """Counts over exactly the records being sent, for Users and Computers."""
    if category.id == "users":
        return aggregate_user_stats(records, now)
    if category.id == "computers":
        return aggregate_computer_stats(records, now)
    return None


def build_prompt(
    category: CategoryDefinition,
    records: list[dict],
    statistics: Optional[dict] = None,
    note: Optional[str] = None,
    max_data_chars: int = 8000,
    now: Optional[datetime] = None,
) -> str:
    """Build the user prompt for one chunk of a category.

    Args:
        category: Category being analyzed.
        records: The chunk's records.
        statistics: Counts over the whole category (pre-sampling).
        note: Sampling note shown to the model when records were dropped.
        max_data_chars: Ceiling for the JSON excerpt.
        now: Reference time for date-based counts.
    """
    excerpt = json.dumps(records, indent=2, default=str, ensure_ascii=False)
    if len(excerpt) > max_data_chars:
        excerpt = excerpt[:max_data_chars]

    parts = [
        get_instruction(category),
        f"Category: {category.name} ({len(records)} records in this request)",
    ]
    if note:
        parts.append(f"NOTE: {note}")
    parts.append(f"DATA:\n{excerpt}")

    if statistics:
        parts.append(
            _format_stats(
                "PRE-COMPUTED STATISTICS FOR THE WHOLE CATEGORY "
                "(treat these counts as authoritative):",
                statistics,
            )
        )
    local = chunk_statistics(category, records, now)
    if local:
        parts.append(
            _format_stats(
                "PRE-COMPUTED STATISTICS FOR THE RECORDS IN THIS REQUEST "
                "(use these for affected_count):",
                local,
            )
        )

    return "\n\n".join(parts)
