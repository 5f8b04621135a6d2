"""
Group Name Matching

Pure helpers for normalizing WhatsApp group subjects and picking the
configured destination group out of the list the account participates in.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from .context import GroupDescriptor

GROUP_SUFFIX = "@g.us"

# Characters trimmed from both ends of a subject before comparison
_EDGE_CHARS = " \t\r\n\"'`"


def to_group_jid(group_id: Optional[str]) -> Optional[str]:
    """Append the group server suffix if the id does not already carry it."""
    if not group_id:
        return None
    group_id = str(group_id).strip()
    if not group_id:
        return None
    return group_id if group_id.endswith(GROUP_SUFFIX) else group_id + GROUP_SUFFIX


def normalize_name(value: Optional[str]) -> str:
    """Trim whitespace and quote characters, then lowercase."""
    if not value:
        return ""
    return str(value).strip(_EDGE_CHARS).strip().lower()


def strip_non_alnum(value: Optional[str]) -> str:
    """
    Lowercase and drop everything that is not a letter or digit.

    Uses str.isalnum so accented Latin and Cyrillic letters survive.
    """
    return "".join(ch for ch in str(value or "").lower() if ch.isalnum())


@dataclass
class GroupMatch:
    """A resolved destination group and the rule that selected it."""
    group: GroupDescriptor
    strategy: str


def match_group(
    groups: Iterable[GroupDescriptor],
    configured_id: Optional[str] = None,
    configured_name: Optional[str] = None,
) -> Optional[GroupMatch]:
    """
    Select the destination group, first match wins.

    Order: exact id, exact name, name prefix, name substring, name with
    non-alphanumerics stripped, and finally the only group if there is
    exactly one.

    Args:
        groups: Candidate groups
        configured_id: Destination group id (suffix optional)
        configured_name: Destination group display name

    Returns:
        GroupMatch or None if nothing qualifies
    """
    candidates: List[GroupDescriptor] = list(groups)

    wanted_id = to_group_jid(configured_id)
    if wanted_id:
        for group in candidates:
            if group.id == wanted_id:
                return GroupMatch(group, "id")

    wanted_name = normalize_name(configured_name)
    if wanted_name:
        for group in candidates:
            if normalize_name(group.name) == wanted_name:
                return GroupMatch(group, "name")

        for group in candidates:
            if normalize_name(group.name).startswith(wanted_name):
                return GroupMatch(group, "prefix")

        for group in candidates:
            if wanted_name in normalize_name(group.name):
                return GroupMatch(group, "contains")

        wanted_alnum = strip_non_alnum(wanted_name)
        if wanted_alnum:
            for group in candidates:
                if strip_non_alnum(group.name) == wanted_alnum:
                    return GroupMatch(group, "alnum")

    if len(candidates) == 1:
        return GroupMatch(candidates[0], "sole")

    return None
