"""
Identity resolution for persons and institutions of one resource.

The same person frequently appears several times in the input: once as
author, once as point of contact, spelled "Förste" in one row and "Foerste"
in the next, sometimes with and sometimes without ORCID. resolve() collapses
these appearances into one identity per person, decides the contact flag and
keeps contributors that are already authors out of the contributor list.

Ambiguous cases are kept apart rather than merged: two appearances with
different ORCIDs are never merged, and an appearance without ORCID only joins
an ORCID-carrying identity when it is the only candidate for that name.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from datacite_engine.models import (
    Affiliation,
    Agent,
    AgentKind,
    ContributorLink,
    ContributorRole,
    CreatorLink,
)
from datacite_engine.utils.name_parser import canonicalize_orcid, canonicalize_ror
from datacite_engine.utils.text_normalizer import normalize


logger = logging.getLogger(__name__)


@dataclass
class CandidateAgent:
    """One appearance of a person or institution in the input data."""
    kind: AgentKind = AgentKind.PERSON
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    name: Optional[str] = None
    roles: List[ContributorRole] = field(default_factory=list)
    orcid: Optional[str] = None
    ror: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    affiliations: List[Affiliation] = field(default_factory=list)
    position: int = 0

    @property
    def display_name(self) -> str:
        if self.kind is AgentKind.INSTITUTION:
            return self.name or ""
        if self.family_name and self.given_name:
            return f"{self.family_name}, {self.given_name}"
        return self.family_name or self.given_name or self.name or ""

    @property
    def is_author(self) -> bool:
        return ContributorRole.CREATOR in self.roles

    @property
    def has_contact_role(self) -> bool:
        return any(role.is_contact for role in self.roles)

    def identity(self) -> Optional[str]:
        """Canonical identifier used to tell same-named agents apart."""
        if self.kind is AgentKind.PERSON:
            return canonicalize_orcid(self.orcid)
        return canonicalize_ror(self.ror)


@dataclass
class ResolvedAgent:
    """A deduplicated identity with accumulated roles and contact metadata."""
    kind: AgentKind
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    name: Optional[str] = None
    orcid: Optional[str] = None
    ror: Optional[str] = None
    roles: List[ContributorRole] = field(default_factory=list)
    is_contact: bool = False
    email: Optional[str] = None
    website: Optional[str] = None
    affiliations: List[Affiliation] = field(default_factory=list)
    position: int = 0
    agent_id: Optional[int] = None

    @property
    def display_name(self) -> str:
        if self.kind is AgentKind.INSTITUTION:
            return self.name or ""
        if self.family_name and self.given_name:
            return f"{self.family_name}, {self.given_name}"
        return self.family_name or self.given_name or self.name or ""

    def to_agent(self) -> Agent:
        if self.kind is AgentKind.PERSON:
            return Agent(
                kind=AgentKind.PERSON,
                given_name=self.given_name,
                family_name=self.family_name,
                name=self.display_name or None,
                identifier=self.orcid,
                identifier_scheme="ORCID" if self.orcid else None,
                agent_id=self.agent_id,
            )
        return Agent(
            kind=AgentKind.INSTITUTION,
            name=self.name,
            identifier=self.ror,
            identifier_scheme="ROR" if self.ror else None,
            agent_id=self.agent_id,
        )


@dataclass
class ResolvedAgents:
    """Result of resolve(): authors and contributors of one resource."""
    authors: List[ResolvedAgent] = field(default_factory=list)
    contributors: List[ResolvedAgent] = field(default_factory=list)

    def to_links(self) -> Tuple[List[CreatorLink], List[ContributorLink]]:
        """Convert to creator and contributor links of a ResourceGraph."""
        creators = [
            CreatorLink(
                agent=author.to_agent(),
                position=author.position,
                affiliations=list(author.affiliations),
                is_contact=author.is_contact,
                email=author.email,
                website=author.website,
                roles=list(author.roles),
            )
            for author in self.authors
        ]
        contributors = [
            ContributorLink(
                agent=contributor.to_agent(),
                roles=list(contributor.roles),
                position=contributor.position,
                affiliations=list(contributor.affiliations),
                is_contact=contributor.is_contact,
                email=contributor.email,
                website=contributor.website,
            )
            for contributor in self.contributors
        ]
        return creators, contributors


class _Group:
    """Appearances collected under one identity."""

    def __init__(self, kind: AgentKind, key: str, order: int):
        self.kind = kind
        self.key = key
        self.order = order
        self.identity: Optional[str] = None
        self.members: List[Tuple[int, CandidateAgent]] = []

    def add(self, index: int, candidate: CandidateAgent, identity: Optional[str]):
        self.members.append((index, candidate))
        if self.identity is None and identity:
            self.identity = identity

    def absorb(self, other: '_Group'):
        for index, candidate in other.members:
            self.add(index, candidate, candidate.identity())

    @property
    def is_author(self) -> bool:
        return any(candidate.is_author for _, candidate in self.members)

    def first_author_index(self) -> int:
        return min(index for index, candidate in self.members if candidate.is_author)

    def first_index(self) -> int:
        return min(index for index, _ in self.members)


def resolve(
    candidates: Iterable[CandidateAgent],
    existing_agents: Optional[Iterable[Agent]] = None
) -> ResolvedAgents:
    """
    Collapse all agent appearances of one resource into distinct identities.

    Args:
        candidates: Appearances in input order, each carrying its roles
        existing_agents: Already persisted agents that may be reused; reuse
            requires identifier and normalized name to match

    Returns:
        ResolvedAgents with authors (groups containing a Creator appearance)
        and contributors (all other groups not matching an author)
    """
    candidate_list = list(candidates)
    groups: List[_Group] = []
    groups_by_key: Dict[Tuple[AgentKind, str], List[_Group]] = {}

    for index, candidate in enumerate(candidate_list):
        key = normalize(candidate.display_name)
        identity = candidate.identity()

        group = None
        if key:
            group = _select_group(groups_by_key.get((candidate.kind, key), []), identity)

        if group is None:
            group = _Group(candidate.kind, key, len(groups))
            groups.append(group)
            if key:
                groups_by_key.setdefault((candidate.kind, key), []).append(group)

        group.add(index, candidate, identity)

    author_groups = [group for group in groups if group.is_author]
    contributor_groups = []

    for group in groups:
        if group.is_author:
            continue
        target = _matching_author_group(author_groups, group)
        if target is not None:
            logger.debug(
                f"Contributor '{group.members[0][1].display_name}' matches author "
                f"'{target.members[0][1].display_name}', merging roles"
            )
            target.absorb(group)
            continue
        contributor_groups.append(group)

    author_groups.sort(key=lambda g: (g.first_author_index(), g.order))
    contributor_groups.sort(key=lambda g: (g.first_index(), g.order))

    existing = list(existing_agents or [])
    result = ResolvedAgents(
        authors=[_build_resolved(group, position, existing) for position, group in enumerate(author_groups)],
        contributors=[_build_resolved(group, position, existing) for position, group in enumerate(contributor_groups)],
    )

    logger.debug(
        f"Resolved {len(candidate_list)} agent appearances into "
        f"{len(result.authors)} authors and {len(result.contributors)} contributors"
    )
    return result


def _select_group(same_key: List[_Group], identity: Optional[str]) -> Optional[_Group]:
    if not same_key:
        return None

    if identity:
        for group in same_key:
            if group.identity == identity:
                return group
        unidentified = [group for group in same_key if group.identity is None]
        if len(same_key) == 1 and unidentified:
            return unidentified[0]
        return None

    if len(same_key) == 1:
        return same_key[0]
    unidentified = [group for group in same_key if group.identity is None]
    if len(unidentified) == 1:
        return unidentified[0]
    return None


def _matching_author_group(author_groups: List[_Group], group: _Group) -> Optional[_Group]:
    if not group.key:
        return None
    same_key = [
        author_group for author_group in author_groups
        if author_group.kind is group.kind and author_group.key == group.key
    ]
    return _select_group(same_key, group.identity)


def _build_resolved(group: _Group, position: int, existing: List[Agent]) -> ResolvedAgent:
    members = [candidate for _, candidate in sorted(group.members, key=lambda m: m[0])]
    primary = members[0]

    resolved = ResolvedAgent(kind=group.kind, position=position)

    named = next((m for m in members if m.family_name or m.given_name), None)
    if named is not None:
        resolved.given_name = named.given_name
        resolved.family_name = named.family_name
    resolved.name = primary.name or next((m.name for m in members if m.name), None)

    if group.kind is AgentKind.PERSON:
        resolved.orcid = group.identity
    else:
        resolved.ror = group.identity

    for member in members:
        for role in member.roles:
            if role not in resolved.roles:
                resolved.roles.append(role)

    resolved.is_contact = any(member.has_contact_role for member in members)

    contact_members = [m for m in members if m.has_contact_role]
    for member in contact_members + [m for m in members if not m.has_contact_role]:
        if resolved.email is None and member.email:
            resolved.email = member.email
        if resolved.website is None and member.website:
            resolved.website = member.website

    resolved.affiliations = merge_affiliations(
        affiliation for member in members for affiliation in member.affiliations
    )

    reusable = find_reusable_agent(resolved.to_agent(), existing)
    if reusable is not None:
        resolved.agent_id = reusable.agent_id

    return resolved


def merge_affiliations(affiliations: Iterable[Affiliation]) -> List[Affiliation]:
    """De-duplicate affiliations by ROR id, or by normalized name when no id is present."""
    merged: List[Affiliation] = []
    seen = set()
    for affiliation in affiliations:
        if not affiliation.name and not affiliation.identifier:
            continue
        ror = canonicalize_ror(affiliation.identifier)
        key = ("ror", ror) if ror else ("name", normalize(affiliation.name))
        if key in seen:
            continue
        seen.add(key)
        merged.append(affiliation)
    return merged


def find_reusable_agent(agent: Agent, existing_agents: Iterable[Agent]) -> Optional[Agent]:
    """
    Find a persisted agent that may be reused for the given agent.

    Reuse requires the normalized display name AND the normalized identifier
    to match (two agents without identifier match by name alone). An
    identifier match against a different name is never reused, so a wrongly
    attached ORCID cannot rename or merge an unrelated stored person.

    Args:
        agent: Agent built from the input
        existing_agents: Persisted agents (with agent_id)

    Returns:
        The matching persisted agent, or None if a new one must be created
    """
    key = normalize(agent.display_name)
    if not key:
        return None

    identifier = _canonical_identifier(agent)

    for candidate in existing_agents:
        if candidate.kind is not agent.kind:
            continue
        if _canonical_identifier(candidate) != identifier:
            continue
        if normalize(candidate.display_name) != key:
            if identifier:
                logger.warning(
                    f"Identifier {identifier} is stored for '{candidate.display_name}', "
                    f"not reusing it for '{agent.display_name}'"
                )
            continue
        return candidate

    return None


def _canonical_identifier(agent: Agent) -> Optional[str]:
    if agent.kind is AgentKind.PERSON:
        return canonicalize_orcid(agent.identifier)
    return canonicalize_ror(agent.identifier)
