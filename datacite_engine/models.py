"""Resource graph data model shared by ingestion, identity resolution and export."""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional, Tuple


logger = logging.getLogger(__name__)


SIZE_PRECISION = Decimal("0.0001")


class AgentKind(Enum):
    """Tag of the Agent variant (person or institution)."""
    PERSON = "person"
    INSTITUTION = "institution"


class ContributorRole(Enum):
    """
    Closed set of agent roles.

    Contains the DataCite 4.6 contributor types plus ``Creator`` (authorship)
    and the GFZ-internal ``pointOfContact`` label used by the legacy database.
    Free-text labels from upstream systems are mapped with ``from_label()``;
    anything unknown becomes ``OTHER``.
    """
    CREATOR = "Creator"
    POINT_OF_CONTACT = "pointOfContact"
    CONTACT_PERSON = "ContactPerson"
    DATA_COLLECTOR = "DataCollector"
    DATA_CURATOR = "DataCurator"
    DATA_MANAGER = "DataManager"
    DISTRIBUTOR = "Distributor"
    EDITOR = "Editor"
    HOSTING_INSTITUTION = "HostingInstitution"
    PRODUCER = "Producer"
    PROJECT_LEADER = "ProjectLeader"
    PROJECT_MANAGER = "ProjectManager"
    PROJECT_MEMBER = "ProjectMember"
    REGISTRATION_AGENCY = "RegistrationAgency"
    REGISTRATION_AUTHORITY = "RegistrationAuthority"
    RELATED_PERSON = "RelatedPerson"
    RESEARCHER = "Researcher"
    RESEARCH_GROUP = "ResearchGroup"
    RIGHTS_HOLDER = "RightsHolder"
    SPONSOR = "Sponsor"
    SUPERVISOR = "Supervisor"
    TRANSLATOR = "Translator"
    WORK_PACKAGE_LEADER = "WorkPackageLeader"
    OTHER = "Other"

    @classmethod
    def from_label(cls, label: Optional[str]) -> 'ContributorRole':
        """
        Map a free-text role label onto the closed enumeration.

        Matching ignores case, spaces, hyphens and underscores, so
        "ProjectLeader", "project leader" and "project-leader" are equal.
        The editor slug "author" maps to CREATOR.

        Args:
            label: Role label as delivered by CSV, XML or the legacy database

        Returns:
            Matching role, or OTHER for unrecognized or empty labels
        """
        if not label:
            return cls.OTHER

        key = _role_key(label)
        role = _ROLE_LOOKUP.get(key)
        if role is None:
            logger.debug(f"Unrecognized role label '{label}' mapped to Other")
            return cls.OTHER
        return role

    @property
    def is_contact(self) -> bool:
        """True for the roles that mark a point of contact."""
        return self in (ContributorRole.POINT_OF_CONTACT, ContributorRole.CONTACT_PERSON)

    @property
    def is_institution_only(self) -> bool:
        """True for roles that DataCite only assigns to organizations."""
        return self in _INSTITUTION_ONLY_ROLES

    @property
    def datacite_type(self) -> str:
        """contributorType value for DataCite export."""
        if self is ContributorRole.POINT_OF_CONTACT:
            return ContributorRole.CONTACT_PERSON.value
        return self.value


def _role_key(label: str) -> str:
    return re.sub(r'[\s_\-]+', '', label).lower()


_ROLE_LOOKUP = {_role_key(role.value): role for role in ContributorRole}
_ROLE_LOOKUP.update({
    "author": ContributorRole.CREATOR,
    "contactperson": ContributorRole.CONTACT_PERSON,
})

_INSTITUTION_ONLY_ROLES = frozenset({
    ContributorRole.DISTRIBUTOR,
    ContributorRole.HOSTING_INSTITUTION,
    ContributorRole.REGISTRATION_AGENCY,
    ContributorRole.REGISTRATION_AUTHORITY,
    ContributorRole.RESEARCH_GROUP,
    ContributorRole.SPONSOR,
})


@dataclass
class Affiliation:
    """Affiliation of a person, optionally identified by a ROR id."""
    name: str
    identifier: Optional[str] = None
    identifier_scheme: Optional[str] = None
    scheme_uri: Optional[str] = None


@dataclass
class Agent:
    """
    A person or an institution.

    Persons use given_name/family_name, institutions use name. The identifier
    is an ORCID (persons, stored without URL prefix) or a ROR id (institutions).
    agent_id is set when the agent corresponds to an already persisted record.
    """
    kind: AgentKind = AgentKind.PERSON
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    name: Optional[str] = None
    identifier: Optional[str] = None
    identifier_scheme: Optional[str] = None
    agent_id: Optional[int] = None

    @property
    def is_person(self) -> bool:
        return self.kind is AgentKind.PERSON

    @property
    def display_name(self) -> str:
        """Name in "Family, Given" form for persons, plain name for institutions."""
        if not self.is_person:
            return self.name or ""
        if self.family_name and self.given_name:
            return f"{self.family_name}, {self.given_name}"
        return self.family_name or self.given_name or self.name or ""


@dataclass
class CreatorLink:
    """An agent in the author list of a resource."""
    agent: Agent
    position: int = 0
    affiliations: List[Affiliation] = field(default_factory=list)
    is_contact: bool = False
    email: Optional[str] = None
    website: Optional[str] = None
    roles: List[ContributorRole] = field(default_factory=lambda: [ContributorRole.CREATOR])


@dataclass
class ContributorLink:
    """An agent in the contributor list of a resource, with one or more roles."""
    agent: Agent
    roles: List[ContributorRole] = field(default_factory=list)
    position: int = 0
    affiliations: List[Affiliation] = field(default_factory=list)
    is_contact: bool = False
    email: Optional[str] = None
    website: Optional[str] = None


@dataclass
class Title:
    value: str
    title_type: str = "MainTitle"
    lang: Optional[str] = None


@dataclass
class ResourceDate:
    """
    A dated event of the resource.

    start and end keep the precision they were given in (year, year-month,
    full date or datetime); either may be None for open ranges.
    """
    date_type: str
    start: Optional[str] = None
    end: Optional[str] = None
    date_information: Optional[str] = None


@dataclass
class GeoPoint:
    longitude: float
    latitude: float


@dataclass
class GeoBox:
    west_bound_longitude: float
    east_bound_longitude: float
    south_bound_latitude: float
    north_bound_latitude: float


@dataclass
class GeoLocation:
    """
    Spatial coverage entry.

    At most one of point, box and polygon_points is populated. A polygon needs
    at least three vertices; in_polygon_point may only accompany a polygon.
    """
    place: Optional[str] = None
    point: Optional[GeoPoint] = None
    box: Optional[GeoBox] = None
    polygon_points: List[GeoPoint] = field(default_factory=list)
    in_polygon_point: Optional[GeoPoint] = None
    elevation: Optional[float] = None
    elevation_unit: Optional[str] = None

    def __post_init__(self):
        variants = [self.point is not None, self.box is not None, bool(self.polygon_points)]
        if sum(variants) > 1:
            raise ValueError("GeoLocation must not mix point, box and polygon coordinates")
        if self.polygon_points and len(self.polygon_points) < 3:
            raise ValueError("GeoLocation polygon needs at least three points")
        if self.in_polygon_point is not None and not self.polygon_points:
            raise ValueError("inPolygonPoint requires polygon points")

    @property
    def variant(self) -> Optional[str]:
        """Name of the populated coordinate variant ('point', 'box', 'polygon') or None."""
        if self.point is not None:
            return "point"
        if self.box is not None:
            return "box"
        if self.polygon_points:
            return "polygon"
        return None

    @property
    def is_empty(self) -> bool:
        return self.variant is None and not self.place


@dataclass
class Size:
    """A (value, unit, type) measurement of a sample, e.g. 0.9 m Drilled Length."""
    value: Decimal
    unit: Optional[str] = None
    type: Optional[str] = None

    def __post_init__(self):
        self.value = Decimal(self.value).quantize(SIZE_PRECISION, rounding=ROUND_HALF_UP)


@dataclass
class AlternateIdentifier:
    value: str
    type: str


@dataclass
class FundingReference:
    funder_name: str
    funder_identifier: Optional[str] = None
    funder_identifier_type: Optional[str] = None
    scheme_uri: Optional[str] = None
    award_number: Optional[str] = None
    award_uri: Optional[str] = None
    award_title: Optional[str] = None


@dataclass
class RelatedIdentifier:
    identifier: str
    identifier_type: str = "DOI"
    relation_type: str = "References"
    resource_type_general: Optional[str] = None


@dataclass
class Description:
    value: str
    description_type: str = "Abstract"
    lang: Optional[str] = None


@dataclass
class Subject:
    value: str
    subject_scheme: Optional[str] = None
    scheme_uri: Optional[str] = None
    value_uri: Optional[str] = None


@dataclass
class Rights:
    name: str
    uri: Optional[str] = None
    identifier: Optional[str] = None
    scheme_uri: Optional[str] = None


@dataclass
class ResourceGraph:
    """
    Full bibliographic graph of one resource (dataset or physical sample).

    Built by CSV/XML/JSON ingestion or the legacy database reader and consumed
    by the DataCite serializer.
    """
    identifier: Optional[str] = None
    identifier_type: str = "DOI"
    resource_id: Optional[int] = None
    publication_year: Optional[int] = None
    resource_type_general: str = "Dataset"
    resource_type: Optional[str] = None
    version: Optional[str] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    sample_type: Optional[str] = None
    material: Optional[str] = None
    titles: List[Title] = field(default_factory=list)
    dates: List[ResourceDate] = field(default_factory=list)
    creators: List[CreatorLink] = field(default_factory=list)
    contributors: List[ContributorLink] = field(default_factory=list)
    geo_locations: List[GeoLocation] = field(default_factory=list)
    alternate_identifiers: List[AlternateIdentifier] = field(default_factory=list)
    sizes: List[Size] = field(default_factory=list)
    funding_references: List[FundingReference] = field(default_factory=list)
    related_identifiers: List[RelatedIdentifier] = field(default_factory=list)
    descriptions: List[Description] = field(default_factory=list)
    subjects: List[Subject] = field(default_factory=list)
    rights: List[Rights] = field(default_factory=list)
    classifications: List[str] = field(default_factory=list)
    geological_ages: List[str] = field(default_factory=list)
    geological_units: List[str] = field(default_factory=list)

    @property
    def is_sample(self) -> bool:
        """True for IGSN physical samples."""
        return (
            self.identifier_type.upper() == "IGSN"
            or self.resource_type_general == "PhysicalObject"
        )

    @property
    def main_title(self) -> Optional[str]:
        for title in self.titles:
            if title.title_type == "MainTitle":
                return title.value
        return self.titles[0].value if self.titles else None

    def other_titles(self) -> List[Title]:
        return [title for title in self.titles if title.title_type == "Other"]

    def sample_alternate_identifiers(self) -> List[AlternateIdentifier]:
        """
        Alternate identifiers exported for this resource.

        Only sample resources export alternate identifiers. Explicitly stored
        ones win; otherwise they are derived from the "Other" titles.
        """
        if not self.is_sample:
            return []
        if self.alternate_identifiers:
            return list(self.alternate_identifiers)
        return derive_alternate_identifiers(self.other_titles())


ACCESSION_NUMBER_TYPE = "Local accession number"
SAMPLE_NAME_TYPE = "Local sample name"


def derive_alternate_identifiers(other_titles: List[Title]) -> List[AlternateIdentifier]:
    """
    Build alternate identifiers from "Other" titles of a sample.

    The first Other title is the sample name (local accession number), the
    remaining ones are additional local sample names.
    """
    identifiers = []
    for index, title in enumerate(other_titles):
        label = ACCESSION_NUMBER_TYPE if index == 0 else SAMPLE_NAME_TYPE
        identifiers.append(AlternateIdentifier(value=title.value, type=label))
    return identifiers


def split_size_label(label: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a size label like "Drilled Length [m]" into (type, unit).

    Labels without brackets are treated as type only.
    """
    if not label or not label.strip():
        return None, None
    match = re.match(r'^(.+?)\s*\[([^\]]+)\]$', label.strip())
    if match:
        return match.group(1).strip(), match.group(2).strip()
    return label.strip(), None
