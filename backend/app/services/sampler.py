"""Sampling and aggregation for oversized categories.

Users and GPOs can run to hundreds of thousands of records in large
forests. Before prompting, records are:

1. truncated: every string longer than ``max_field_length`` is cut,
2. sampled (only when oversized): risk-matching records first, up to a
   priority cap, then ordinary records up to a normal cap,
3. summarized: aggregate statistics are computed over the full record set
   and travel with the sample, so counts stay exact even when records are
   dropped.

``fit_to_size`` is the last-resort size fitting applied to the result.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

PRIVILEGED_GROUPS = (
    "Domain Admins",
    "Enterprise Admins",
    "Schema Admins",
    "Administrators",
    "Account Operators",
    "Backup Operators",
    "Server Operators",
    "Print Operators",
)

DEFAULT_GPO_NAMES = ("Default Domain Policy", "Default Domain Controllers Policy")

WIDE_TRUSTEES = ("Authenticated Users", "Everyone")

OBSOLETE_OS_MARKERS = (
    "server 2003",
    "server 2008",
    "server 2012",
    "windows xp",
    "windows 7",
    "windows 8",
)

STALE_PASSWORD_DAYS = 365
INACTIVE_DAYS = 90
MAX_FIT_ATTEMPTS = 3
FIT_LIST_LIMIT = 5

_MS_DATE = re.compile(r"/Date\((-?\d+)(?:[+-]\d{4})?\)/")


@dataclass
class SamplingLimits:
    """Caps applied when sampling; defaults match Settings defaults."""

    max_field_length: int = 500
    user_priority_cap: int = 4500
    user_normal_cap: int = 500
    gpo_priority_cap: int = 300
    gpo_normal_cap: int = 200

    @classmethod
    def from_settings(cls, settings: Any) -> "SamplingLimits":
        return cls(
            max_field_length=settings.max_field_length,
            user_priority_cap=settings.user_priority_cap,
            user_normal_cap=settings.user_normal_cap,
            gpo_priority_cap=settings.gpo_priority_cap,
            gpo_normal_cap=settings.gpo_normal_cap,
        )


@dataclass
class SampleResult:
    """Records ready for prompting plus what was learned from the full set."""

    records: list[dict]
    original_count: int
    statistics: Optional[dict] = None
    note: Optional[str] = None

    @property
    def was_sampled(self) -> bool:
        return len(self.records) < self.original_count


@dataclass
class FitResult:
    """Outcome of progressive size fitting."""

    records: list[dict]
    size: int
    attempts: int = 0
    steps: list[str] = field(default_factory=list)


# ── Field helpers ────────────────────────────────────────────────────


def parse_ad_date(value: Any) -> Optional[datetime]:
    """Parse collector dates: ISO-8601 strings or ``/Date(<ms>)/``."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    match = _MS_DATE.fullmatch(text)
    if match:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_true(value: Any) -> bool:
    """Collector booleans arrive as bools, 'true'/'True' strings or 0/1."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True or value == 1


def _as_list(value: Any) -> list:
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def truncate_string(value: str, max_length: int) -> str:
    return value if len(value) <= max_length else value[:max_length] + "..."


def truncate_fields(value: Any, max_length: int) -> Any:
    """Return a copy of ``value`` with every long string cut to ``max_length``."""
    if isinstance(value, str):
        return truncate_string(value, max_length)
    if isinstance(value, dict):
        return {k: truncate_fields(v, max_length) for k, v in value.items()}
    if isinstance(value, list):
        return [truncate_fields(v, max_length) for v in value]
    return value


def _older_than(value: Any, days: int, now: datetime) -> bool:
    parsed = parse_ad_date(value)
    return parsed is not None and parsed < now - timedelta(days=days)


# ── Users ────────────────────────────────────────────────────────────


def has_spn(user: dict) -> bool:
    if is_true(user.get("HasSPN")):
        return True
    return bool(_as_list(user.get("ServicePrincipalNames") or user.get("ServicePrincipalName")))


def preauth_disabled(user: dict) -> bool:
    return is_true(user.get("DoesNotRequirePreAuth")) or is_true(user.get("DoNotRequirePreAuth"))


def is_privileged_user(user: dict) -> bool:
    if is_true(user.get("IsPrivileged")):
        return True
    groups = [str(g) for g in _as_list(user.get("MemberOf"))]
    return any(pg in g for g in groups for pg in PRIVILEGED_GROUPS)


def is_priority_user(user: dict, now: datetime) -> bool:
    """Risk predicate used to rank users when sampling."""
    return (
        is_privileged_user(user)
        or has_spn(user)
        or _older_than(user.get("PasswordLastSet"), STALE_PASSWORD_DAYS, now)
        or preauth_disabled(user)
        or user.get("AdminCount") in (1, "1")
    )


def simplify_user(user: dict, max_length: int) -> dict:
    """Project a user onto the fields the analysis relies on."""
    name = user.get("Name") or user.get("SamAccountName") or ""
    return {
        "SamAccountName": user.get("SamAccountName"),
        "Name": truncate_string(str(name), max_length),
        "Enabled": user.get("Enabled"),
        "PasswordNeverExpires": user.get("PasswordNeverExpires"),
        "PasswordNotRequired": user.get("PasswordNotRequired"),
        "PasswordLastSet": user.get("PasswordLastSet"),
        "LastLogonDate": user.get("LastLogonDate"),
        "AdminCount": user.get("AdminCount"),
        "HasSPN": has_spn(user),
        "DoesNotRequirePreAuth": preauth_disabled(user),
        "TrustedForDelegation": user.get("TrustedForDelegation"),
        "MemberOfCount": len(_as_list(user.get("MemberOf"))),
        "IsPrivileged": is_privileged_user(user),
    }


def aggregate_user_stats(users: list[dict], now: Optional[datetime] = None) -> dict:
    """Counts over the full user set; always sent even when users are dropped."""
    now = now or datetime.now(timezone.utc)
    enabled = [u for u in users if is_true(u.get("Enabled"))]
    return {
        "total": len(users),
        "enabled": len(enabled),
        "disabled": len(users) - len(enabled),
        "password_never_expires": sum(
            1 for u in enabled if is_true(u.get("PasswordNeverExpires"))
        ),
        "password_not_required": sum(
            1 for u in enabled if is_true(u.get("PasswordNotRequired"))
        ),
        "with_spn": sum(1 for u in enabled if has_spn(u)),
        "asrep_roastable": sum(1 for u in enabled if preauth_disabled(u)),
        "privileged": sum(
            1 for u in users if is_privileged_user(u) or u.get("AdminCount") in (1, "1")
        ),
        "stale_passwords": sum(
            1 for u in enabled if _older_than(u.get("PasswordLastSet"), STALE_PASSWORD_DAYS, now)
        ),
        "never_logged_in": sum(1 for u in enabled if not u.get("LastLogonDate")),
        "inactive_90_days": sum(
            1 for u in enabled if _older_than(u.get("LastLogonDate"), INACTIVE_DAYS, now)
        ),
    }


# ── Computers ────────────────────────────────────────────────────────


def aggregate_computer_stats(computers: list[dict], now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    obsolete = 0
    for c in computers:
        os_name = str(c.get("OperatingSystem") or "").lower()
        if any(marker in os_name for marker in OBSOLETE_OS_MARKERS):
            obsolete += 1
    return {
        "total": len(computers),
        "obsolete_os": obsolete,
        "inactive_90_days": sum(
            1 for c in computers if _older_than(c.get("LastLogonDate"), INACTIVE_DAYS, now)
        ),
    }


# ── GPOs ─────────────────────────────────────────────────────────────


def is_priority_gpo(gpo: dict) -> bool:
    name = str(gpo.get("DisplayName") or "")
    if any(default in name for default in DEFAULT_GPO_NAMES):
        return True
    if len(_as_list(gpo.get("Links"))) > 1:
        return True
    for perm in _as_list(gpo.get("Permissions")):
        trustee = str(perm.get("Trustee") or "") if isinstance(perm, dict) else str(perm)
        if any(t in trustee for t in WIDE_TRUSTEES):
            return True
    return False


def simplify_gpo(gpo: dict, max_length: int) -> dict:
    links = _as_list(gpo.get("Links"))
    return {
        "DisplayName": truncate_string(str(gpo.get("DisplayName") or ""), max_length),
        "GpoStatus": gpo.get("GpoStatus") or "AllSettingsEnabled",
        "CreationTime": gpo.get("CreationTime"),
        "ModificationTime": gpo.get("ModificationTime"),
        "Links": links,
        "LinksCount": len(links),
        "HasNote": bool(gpo.get("Note")),
        "Path": truncate_string(str(gpo.get("Path") or ""), 100),
    }


# ── Sampling ─────────────────────────────────────────────────────────


def prioritize(
    records: list[dict],
    is_priority: Callable[[dict], bool],
    priority_cap: int,
    normal_cap: int,
) -> list[dict]:
    """Priority records (up to ``priority_cap``) followed by normal ones.

    Normal records only fill their own quota, so they can never take the
    place of an unselected priority record.
    """
    priority: list[dict] = []
    normal: list[dict] = []
    for record in records:
        if is_priority(record):
            if len(priority) < priority_cap:
                priority.append(record)
        elif len(normal) < normal_cap:
            normal.append(record)
    return priority + normal


def sample_records(
    records: list[dict],
    category_id: str,
    limits: Optional[SamplingLimits] = None,
    now: Optional[datetime] = None,
) -> SampleResult:
    """Bound a category's records for prompting.

    Users and GPOs are risk-sampled when they exceed ``priority_cap +
    normal_cap``; every other category is only truncated.
    """
    limits = limits or SamplingLimits()
    now = now or datetime.now(timezone.utc)
    max_len = limits.max_field_length
    total = len(records)
    truncated = [truncate_fields(r, max_len) for r in records if isinstance(r, dict)]

    if category_id == "users":
        statistics = aggregate_user_stats(truncated, now)
        cap = limits.user_priority_cap + limits.user_normal_cap
        if total <= cap:
            return SampleResult(records=truncated, original_count=total, statistics=statistics)
        sampled = prioritize(
            truncated,
            lambda u: is_priority_user(u, now),
            limits.user_priority_cap,
            limits.user_normal_cap,
        )
        logger.info(f"Users: sampled {len(sampled)} from {total} total")
        return SampleResult(
            records=[simplify_user(u, max_len) for u in sampled],
            original_count=total,
            statistics=statistics,
            note=(
                f"Optimized dataset: showing {len(sampled)} highest-risk users out of "
                f"{total}. Aggregate statistics cover every user."
            ),
        )

    if category_id == "gpos":
        cap = limits.gpo_priority_cap + limits.gpo_normal_cap
        if total <= cap:
            return SampleResult(records=truncated, original_count=total)
        sampled = prioritize(
            truncated, is_priority_gpo, limits.gpo_priority_cap, limits.gpo_normal_cap
        )
        logger.info(f"GPOs: sampled {len(sampled)} from {total} total")
        return SampleResult(
            records=[simplify_gpo(g, max_len) for g in sampled],
            original_count=total,
            statistics={"total_gpos": total},
            note=f"Optimized dataset: showing {len(sampled)} critical GPOs out of {total}.",
        )

    if category_id == "computers":
        return SampleResult(
            records=truncated,
            original_count=total,
            statistics=aggregate_computer_stats(truncated, now),
        )

    return SampleResult(records=truncated, original_count=total)


def serialized_size(records: list[dict]) -> int:
    return len(json.dumps(records, default=str))


def fit_to_size(records: list[dict], max_chars: int, label: str = "") -> FitResult:
    """Shrink ``records`` until they serialize under ``max_chars``.

    Bounded to three steps: halve the item count, keep only the first item,
    cut list-valued fields of that item to five elements. Non-empty input
    always yields non-empty output.
    """
    size = serialized_size(records)
    result = FitResult(records=records, size=size)
    if not records:
        return result

    while result.size > max_chars and result.attempts < MAX_FIT_ATTEMPTS:
        result.attempts += 1
        if result.attempts == 1:
            result.records = result.records[: math.ceil(len(result.records) / 2)]
            step = f"halved to {len(result.records)} items"
        elif result.attempts == 2:
            result.records = result.records[:1]
            step = "kept first item only"
        else:
            first = dict(result.records[0])
            for key, value in first.items():
                if isinstance(value, list) and len(value) > FIT_LIST_LIMIT:
                    first[key] = value[:FIT_LIST_LIMIT]
            result.records = [first]
            step = f"cut list fields to {FIT_LIST_LIMIT} elements"
        previous = result.size
        result.size = serialized_size(result.records)
        result.steps.append(step)
        logger.warning(
            f"{label or 'Category'} too large ({previous} chars > {max_chars}), "
            f"attempt {result.attempts}: {step} -> {result.size} chars"
        )

    return result
