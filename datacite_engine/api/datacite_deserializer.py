"""
Import of DataCite JSON and XML documents into ResourceGraphs.

XML documents are first read into the same attribute structure the DataCite
REST API returns, so both formats share one mapping onto the graph.
"""

import json
import logging
import re
import xml.etree.ElementTree as ET
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple, Union

from datacite_engine.models import (
    Affiliation,
    AgentKind,
    AlternateIdentifier,
    ContributorRole,
    Description,
    FundingReference,
    GeoBox,
    GeoLocation,
    GeoPoint,
    RelatedIdentifier,
    ResourceDate,
    ResourceGraph,
    Rights,
    Size,
    Subject,
    Title,
)
from datacite_engine.utils.date_resolver import DateResolver
from datacite_engine.utils.identity_resolver import CandidateAgent, merge_affiliations, resolve
from datacite_engine.utils.name_parser import canonicalize_orcid, canonicalize_ror, split_family_given
from datacite_engine.utils.text_normalizer import normalize, normalize_institution


logger = logging.getLogger(__name__)


XML_LANG = "{http://www.w3.org/XML/1998/namespace}lang"
SAMPLE_RESOURCE_TYPE = "Physical Object"

SIZE_PATTERN = re.compile(
    r'^(?:(?P<type>.+?):\s*)?(?P<value>[-+]?\d+(?:\.\d+)?)(?:\s+(?P<unit>.+))?$'
)


class MalformedInputError(Exception):
    """Raised when a document is not valid DataCite JSON or XML."""
    pass


def deserialize(
    document: Union[str, bytes, Dict[str, Any]],
    date_resolver: Optional[DateResolver] = None
) -> ResourceGraph:
    """
    Convert a DataCite document into a ResourceGraph.

    Args:
        document: JSON envelope ({"data": {"attributes": ...}}), bare
            attributes dict, JSON string, or DataCite XML as string/bytes
        date_resolver: Resolver used to split date ranges

    Returns:
        ResourceGraph with creators and contributors resolved

    Raises:
        MalformedInputError: If the document cannot be parsed
    """
    attributes = load_attributes(document)
    return DataCiteDeserializer(date_resolver).from_attributes(attributes)


def load_attributes(document: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Read a JSON or XML document into a DataCite attributes dict.

    Raises:
        MalformedInputError: If the document cannot be parsed
    """
    if isinstance(document, bytes):
        try:
            document = document.decode('utf-8-sig')
        except UnicodeDecodeError as e:
            raise MalformedInputError("Document is not UTF-8 encoded") from e

    if isinstance(document, str):
        text = document.strip()
        if not text:
            raise MalformedInputError("Document is empty")
        if text.startswith('<'):
            return xml_to_attributes(text)
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedInputError(f"Invalid JSON: {e}") from e

    if not isinstance(document, dict):
        raise MalformedInputError("JSON document must be an object")

    if 'data' in document:
        data = document['data']
        if not isinstance(data, dict) or not isinstance(data.get('attributes'), dict):
            raise MalformedInputError("JSON envelope has no 'data.attributes' object")
        return data['attributes']

    return document


def xml_to_attributes(text: str) -> Dict[str, Any]:
    """
    Read a DataCite kernel-4 XML document into the JSON attribute structure.

    Raises:
        MalformedInputError: If the XML is not well-formed or not a DataCite resource
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise MalformedInputError(f"Invalid XML: {e}") from e

    match = re.match(r'^\{(.+)\}resource$', root.tag)
    if not match:
        raise MalformedInputError(f"Root element must be a DataCite <resource>, found <{root.tag}>")
    ns = {'d': match.group(1)}

    def text_of(element: Optional[ET.Element]) -> Optional[str]:
        if element is None or element.text is None:
            return None
        return element.text.strip() or None

    attributes: Dict[str, Any] = {}

    identifier = text_of(root.find('d:identifier', ns))
    if identifier:
        attributes['doi'] = identifier
        attributes['identifiers'] = [{
            'identifier': identifier,
            'identifierType': root.find('d:identifier', ns).get('identifierType', 'DOI'),
        }]

    attributes['creators'] = [
        _xml_name_entry(element, 'creatorName', ns, text_of)
        for element in root.findall('d:creators/d:creator', ns)
    ]

    attributes['titles'] = []
    for element in root.findall('d:titles/d:title', ns):
        title = {'title': text_of(element)}
        if element.get('titleType'):
            title['titleType'] = element.get('titleType')
        if element.get(XML_LANG):
            title['lang'] = element.get(XML_LANG)
        attributes['titles'].append(title)

    publisher = text_of(root.find('d:publisher', ns))
    if publisher:
        attributes['publisher'] = {'name': publisher}

    year = text_of(root.find('d:publicationYear', ns))
    if year:
        attributes['publicationYear'] = year

    resource_type = root.find('d:resourceType', ns)
    if resource_type is not None:
        attributes['types'] = {'resourceTypeGeneral': resource_type.get('resourceTypeGeneral')}
        if text_of(resource_type):
            attributes['types']['resourceType'] = text_of(resource_type)

    attributes['subjects'] = [
        {
            'subject': text_of(element),
            'subjectScheme': element.get('subjectScheme'),
            'schemeUri': element.get('schemeURI'),
            'valueUri': element.get('valueURI'),
        }
        for element in root.findall('d:subjects/d:subject', ns)
    ]

    contributors = []
    for element in root.findall('d:contributors/d:contributor', ns):
        entry = _xml_name_entry(element, 'contributorName', ns, text_of)
        entry['contributorType'] = element.get('contributorType')
        contributors.append(entry)
    attributes['contributors'] = contributors

    attributes['dates'] = [
        {
            'date': text_of(element),
            'dateType': element.get('dateType'),
            'dateInformation': element.get('dateInformation'),
        }
        for element in root.findall('d:dates/d:date', ns)
    ]

    language = text_of(root.find('d:language', ns))
    if language:
        attributes['language'] = language

    attributes['alternateIdentifiers'] = [
        {
            'alternateIdentifier': text_of(element),
            'alternateIdentifierType': element.get('alternateIdentifierType'),
        }
        for element in root.findall('d:alternateIdentifiers/d:alternateIdentifier', ns)
    ]

    attributes['relatedIdentifiers'] = [
        {
            'relatedIdentifier': text_of(element),
            'relatedIdentifierType': element.get('relatedIdentifierType'),
            'relationType': element.get('relationType'),
            'resourceTypeGeneral': element.get('resourceTypeGeneral'),
        }
        for element in root.findall('d:relatedIdentifiers/d:relatedIdentifier', ns)
    ]

    attributes['sizes'] = [text_of(element) for element in root.findall('d:sizes/d:size', ns)]

    version = text_of(root.find('d:version', ns))
    if version:
        attributes['version'] = version

    attributes['rightsList'] = [
        {
            'rights': text_of(element),
            'rightsURI': element.get('rightsURI'),
            'rightsIdentifier': element.get('rightsIdentifier'),
            'schemeURI': element.get('schemeURI'),
        }
        for element in root.findall('d:rightsList/d:rights', ns)
    ]

    attributes['descriptions'] = [
        {
            'description': text_of(element),
            'descriptionType': element.get('descriptionType'),
            'lang': element.get(XML_LANG),
        }
        for element in root.findall('d:descriptions/d:description', ns)
    ]

    geo_locations = []
    for element in root.findall('d:geoLocations/d:geoLocation', ns):
        geo_location: Dict[str, Any] = {}
        place = text_of(element.find('d:geoLocationPlace', ns))
        if place:
            geo_location['geoLocationPlace'] = place
        point = element.find('d:geoLocationPoint', ns)
        if point is not None:
            geo_location['geoLocationPoint'] = _xml_point(point, ns, text_of)
        box = element.find('d:geoLocationBox', ns)
        if box is not None:
            geo_location['geoLocationBox'] = {
                key: text_of(box.find(f'd:{key}', ns))
                for key in ('westBoundLongitude', 'eastBoundLongitude', 'southBoundLatitude', 'northBoundLatitude')
            }
        polygon = element.find('d:geoLocationPolygon', ns)
        if polygon is not None:
            geo_location['geoLocationPolygon'] = {
                'polygonPoints': [
                    _xml_point(vertex, ns, text_of) for vertex in polygon.findall('d:polygonPoint', ns)
                ],
            }
            inner = polygon.find('d:inPolygonPoint', ns)
            if inner is not None:
                geo_location['geoLocationPolygon']['inPolygonPoint'] = _xml_point(inner, ns, text_of)
        geo_locations.append(geo_location)
    attributes['geoLocations'] = geo_locations

    funders = []
    for element in root.findall('d:fundingReferences/d:fundingReference', ns):
        funder_identifier = element.find('d:funderIdentifier', ns)
        award_number = element.find('d:awardNumber', ns)
        funders.append({
            'funderName': text_of(element.find('d:funderName', ns)),
            'funderIdentifier': text_of(funder_identifier),
            'funderIdentifierType': funder_identifier.get('funderIdentifierType') if funder_identifier is not None else None,
            'schemeUri': funder_identifier.get('schemeURI') if funder_identifier is not None else None,
            'awardNumber': text_of(award_number),
            'awardUri': award_number.get('awardURI') if award_number is not None else None,
            'awardTitle': text_of(element.find('d:awardTitle', ns)),
        })
    attributes['fundingReferences'] = funders

    return attributes


def _xml_name_entry(element: ET.Element, name_tag: str, ns: Dict[str, str], text_of) -> Dict[str, Any]:
    name = element.find(f'd:{name_tag}', ns)
    entry: Dict[str, Any] = {
        'name': text_of(name),
        'nameType': name.get('nameType') if name is not None else None,
        'givenName': text_of(element.find('d:givenName', ns)),
        'familyName': text_of(element.find('d:familyName', ns)),
        'nameIdentifiers': [
            {
                'nameIdentifier': text_of(identifier),
                'nameIdentifierScheme': identifier.get('nameIdentifierScheme'),
                'schemeUri': identifier.get('schemeURI'),
            }
            for identifier in element.findall('d:nameIdentifier', ns)
        ],
        'affiliation': [
            {
                'name': text_of(affiliation),
                'affiliationIdentifier': affiliation.get('affiliationIdentifier'),
                'affiliationIdentifierScheme': affiliation.get('affiliationIdentifierScheme'),
                'schemeURI': affiliation.get('schemeURI'),
            }
            for affiliation in element.findall('d:affiliation', ns)
        ],
    }
    return entry


def _xml_point(element: ET.Element, ns: Dict[str, str], text_of) -> Dict[str, Optional[str]]:
    return {
        'pointLongitude': text_of(element.find('d:pointLongitude', ns)),
        'pointLatitude': text_of(element.find('d:pointLatitude', ns)),
    }


class DataCiteDeserializer:
    """Maps DataCite attribute dicts onto ResourceGraphs."""

    def __init__(self, date_resolver: Optional[DateResolver] = None):
        self.date_resolver = date_resolver or DateResolver()

    def from_attributes(self, attributes: Dict[str, Any]) -> ResourceGraph:
        """
        Build a ResourceGraph from a DataCite attributes dict.

        Args:
            attributes: Attributes as returned by the DataCite REST API

        Returns:
            ResourceGraph

        Raises:
            MalformedInputError: If attributes is not a dict
        """
        if not isinstance(attributes, dict):
            raise MalformedInputError("DataCite attributes must be an object")

        graph = ResourceGraph()

        graph.identifier = attributes.get('doi') or self._first_identifier(attributes)
        types = attributes.get('types') or {}
        graph.resource_type_general = types.get('resourceTypeGeneral') or "Dataset"
        graph.resource_type = types.get('resourceType')
        if graph.resource_type_general == "PhysicalObject":
            graph.identifier_type = "IGSN"
            graph.sample_type, graph.material = self._split_sample_type(graph.resource_type)

        graph.publication_year = self._parse_year(attributes.get('publicationYear'))
        graph.publisher = self._publisher_name(attributes.get('publisher'))
        graph.language = attributes.get('language') or None
        graph.version = attributes.get('version') or None

        for entry in _list(attributes, 'titles'):
            if entry.get('title'):
                graph.titles.append(Title(
                    value=entry['title'],
                    title_type=entry.get('titleType') or "MainTitle",
                    lang=entry.get('lang'),
                ))

        self._read_agents(graph, attributes)

        for entry in _list(attributes, 'dates'):
            start, end = self.date_resolver.split_range(entry.get('date'))
            if start is None and end is None:
                continue
            graph.dates.append(ResourceDate(
                date_type=entry.get('dateType') or "Other",
                start=start,
                end=end,
                date_information=entry.get('dateInformation'),
            ))

        for entry in _list(attributes, 'geoLocations'):
            graph.geo_locations.extend(self._read_geo_location(entry))

        for entry in _list(attributes, 'alternateIdentifiers'):
            if entry.get('alternateIdentifier'):
                graph.alternate_identifiers.append(AlternateIdentifier(
                    value=entry['alternateIdentifier'],
                    type=entry.get('alternateIdentifierType') or "Other",
                ))

        for entry in _list(attributes, 'relatedIdentifiers'):
            if entry.get('relatedIdentifier'):
                graph.related_identifiers.append(RelatedIdentifier(
                    identifier=entry['relatedIdentifier'],
                    identifier_type=entry.get('relatedIdentifierType') or "DOI",
                    relation_type=entry.get('relationType') or "References",
                    resource_type_general=entry.get('resourceTypeGeneral'),
                ))

        for entry in _list(attributes, 'fundingReferences'):
            if entry.get('funderName'):
                graph.funding_references.append(FundingReference(
                    funder_name=entry['funderName'],
                    funder_identifier=entry.get('funderIdentifier'),
                    funder_identifier_type=entry.get('funderIdentifierType'),
                    scheme_uri=entry.get('schemeUri'),
                    award_number=entry.get('awardNumber'),
                    award_uri=entry.get('awardUri'),
                    award_title=entry.get('awardTitle'),
                ))

        for entry in _list(attributes, 'descriptions'):
            if entry.get('description'):
                graph.descriptions.append(Description(
                    value=entry['description'],
                    description_type=entry.get('descriptionType') or "Abstract",
                    lang=entry.get('lang'),
                ))

        for entry in _list(attributes, 'subjects'):
            if entry.get('subject'):
                graph.subjects.append(Subject(
                    value=entry['subject'],
                    subject_scheme=entry.get('subjectScheme'),
                    scheme_uri=entry.get('schemeUri'),
                    value_uri=entry.get('valueUri'),
                ))

        for entry in _list(attributes, 'rightsList'):
            if entry.get('rights') or entry.get('rightsIdentifier'):
                graph.rights.append(Rights(
                    name=entry.get('rights') or entry.get('rightsIdentifier'),
                    uri=entry.get('rightsURI') or entry.get('rightsUri'),
                    identifier=entry.get('rightsIdentifier'),
                    scheme_uri=entry.get('schemeURI') or entry.get('schemeUri'),
                ))

        for raw_size in _size_list(attributes.get('sizes')):
            size = parse_size(raw_size)
            if size is not None:
                graph.sizes.append(size)

        logger.info(
            f"Imported {graph.identifier or 'resource without identifier'}: "
            f"{len(graph.creators)} creators, {len(graph.contributors)} contributors"
        )
        return graph

    # =========================================================================
    # Scalars
    # =========================================================================

    @staticmethod
    def _first_identifier(attributes: Dict[str, Any]) -> Optional[str]:
        for entry in _list(attributes, 'identifiers'):
            if entry.get('identifier') and (entry.get('identifierType') or 'DOI') == 'DOI':
                return entry['identifier']
        return None

    @staticmethod
    def _split_sample_type(resource_type: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        if not resource_type or resource_type == SAMPLE_RESOURCE_TYPE:
            return None, None
        if ': ' in resource_type:
            sample_type, material = resource_type.split(': ', 1)
            return sample_type or None, material or None
        return resource_type, None

    @staticmethod
    def _parse_year(value: Any) -> Optional[int]:
        if value is None:
            return None
        try:
            return int(str(value).strip()[:4])
        except ValueError:
            logger.warning(f"Ignoring invalid publicationYear {value!r}")
            return None

    @staticmethod
    def _publisher_name(publisher: Any) -> Optional[str]:
        if isinstance(publisher, dict):
            return publisher.get('name') or None
        return publisher or None

    # =========================================================================
    # Agents
    # =========================================================================

    def _read_agents(self, graph: ResourceGraph, attributes: Dict[str, Any]):
        candidates = [
            candidate_from_entry(entry, [ContributorRole.CREATOR])
            for entry in _list(attributes, 'creators')
            if entry.get('name') or entry.get('familyName') or entry.get('givenName')
        ]
        candidates.extend(aggregate_contributors(
            entry for entry in _list(attributes, 'contributors')
            if entry.get('name') or entry.get('familyName') or entry.get('givenName')
        ))

        for position, candidate in enumerate(candidates):
            candidate.position = position

        resolved = resolve(candidates)
        graph.creators, graph.contributors = resolved.to_links()

    # =========================================================================
    # Geo
    # =========================================================================

    @staticmethod
    def _read_geo_location(entry: Dict[str, Any]) -> List[GeoLocation]:
        """
        Read one DataCite geoLocation.

        DataCite allows point, box and polygon in one geoLocation; they are
        split into separate locations carrying one variant each, the place
        stays on the first.
        """
        place = entry.get('geoLocationPlace') or None
        locations = []

        point = _read_point(entry.get('geoLocationPoint'))
        if point is not None:
            locations.append(GeoLocation(point=point))

        box = entry.get('geoLocationBox')
        if isinstance(box, dict):
            try:
                locations.append(GeoLocation(box=GeoBox(
                    west_bound_longitude=float(box['westBoundLongitude']),
                    east_bound_longitude=float(box['eastBoundLongitude']),
                    south_bound_latitude=float(box['southBoundLatitude']),
                    north_bound_latitude=float(box['northBoundLatitude']),
                )))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Ignoring incomplete geoLocationBox {box}")

        vertices, inner = _read_polygon(entry.get('geoLocationPolygon'))
        if vertices:
            try:
                locations.append(GeoLocation(polygon_points=vertices, in_polygon_point=inner))
            except ValueError as e:
                logger.warning(f"Ignoring geoLocationPolygon: {e}")

        if locations:
            locations[0].place = place
        elif place:
            locations.append(GeoLocation(place=place))
        return locations


def candidate_from_entry(entry: Dict[str, Any], roles: List[ContributorRole]) -> CandidateAgent:
    """Create a CandidateAgent from a DataCite creator or contributor entry."""
    name = (entry.get('name') or '').strip() or None
    name_type = entry.get('nameType')
    identifiers = [i for i in entry.get('nameIdentifiers') or [] if isinstance(i, dict)]

    ror = _identifier_by_scheme(identifiers, 'ROR')
    is_institution = name_type == 'Organizational' or (
        name_type is None
        and not entry.get('givenName') and not entry.get('familyName')
        and (ror is not None or any(role.is_institution_only for role in roles))
    )

    affiliations = merge_affiliations(
        Affiliation(
            name=affiliation.get('name') or '',
            identifier=affiliation.get('affiliationIdentifier'),
            identifier_scheme=affiliation.get('affiliationIdentifierScheme'),
            scheme_uri=affiliation.get('schemeURI') or affiliation.get('schemeUri'),
        )
        for affiliation in _affiliation_list(entry.get('affiliation'))
    )

    if is_institution:
        return CandidateAgent(
            kind=AgentKind.INSTITUTION,
            name=' '.join(name.split()) if name else None,
            roles=list(roles),
            ror=canonicalize_ror(ror),
            affiliations=affiliations,
        )

    given = entry.get('givenName') or None
    family = entry.get('familyName') or None
    if not given and not family:
        given, family = split_family_given(name)

    return CandidateAgent(
        kind=AgentKind.PERSON,
        given_name=given,
        family_name=family,
        name=name,
        roles=list(roles),
        orcid=canonicalize_orcid(_identifier_by_scheme(identifiers, 'ORCID')),
        affiliations=affiliations,
    )


def contributor_key(candidate: CandidateAgent) -> str:
    """
    Deduplication key of an imported contributor.

    Persons: "person:<orcid>" when an ORCID is present, otherwise
    "person:name:<family>:<given>" (normalized). Institutions: "institution:<ror>"
    or the case-insensitive, whitespace-collapsed name.
    """
    if candidate.kind is AgentKind.PERSON:
        if candidate.orcid:
            return f"person:{candidate.orcid}"
        return f"person:name:{normalize(candidate.family_name)}:{normalize(candidate.given_name)}"
    if candidate.ror:
        return f"institution:{candidate.ror}"
    return f"institution:name:{normalize_institution(candidate.name)}"


def aggregate_contributors(entries) -> List[CandidateAgent]:
    """
    Collapse repeated contributor entries into one candidate per agent.

    DataCite lists a contributor once per contributorType. Entries with the
    same key are merged: roles in first-seen order without duplicates,
    affiliations merged by ROR id or name.
    """
    aggregated: Dict[str, CandidateAgent] = {}
    for entry in entries:
        role = ContributorRole.from_label(entry.get('contributorType'))
        candidate = candidate_from_entry(entry, [role])
        key = contributor_key(candidate)

        existing = aggregated.get(key)
        if existing is None:
            aggregated[key] = candidate
            continue

        if role not in existing.roles:
            existing.roles.append(role)
        existing.affiliations = merge_affiliations(existing.affiliations + candidate.affiliations)

    return list(aggregated.values())


def parse_size(raw: Any) -> Optional[Size]:
    """
    Parse an exported size string ("Drilled Length: 0.9 m") back into a Size.

    Returns None for free-text sizes without a numeric value.
    """
    if not isinstance(raw, str) or not raw.strip():
        return None
    match = SIZE_PATTERN.match(raw.strip())
    if not match:
        logger.debug(f"Size '{raw}' has no numeric value, skipped")
        return None
    try:
        value = Decimal(match.group('value'))
    except InvalidOperation:
        return None
    return Size(value=value, unit=match.group('unit'), type=match.group('type'))


def _size_list(value: Any) -> List[Any]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return value
    return []


def _identifier_by_scheme(identifiers: List[Dict[str, Any]], scheme: str) -> Optional[str]:
    for identifier in identifiers:
        if (identifier.get('nameIdentifierScheme') or '').upper() == scheme and identifier.get('nameIdentifier'):
            return identifier['nameIdentifier']
    return None


def _affiliation_list(value: Any) -> List[Dict[str, Any]]:
    # The REST API returns plain strings unless affiliation=true is requested
    if not value:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    result = []
    for item in value:
        if isinstance(item, str):
            result.append({'name': item})
        elif isinstance(item, dict):
            result.append(item)
    return result


def _read_point(value: Any) -> Optional[GeoPoint]:
    if not isinstance(value, dict):
        return None
    try:
        return GeoPoint(longitude=float(value['pointLongitude']), latitude=float(value['pointLatitude']))
    except (KeyError, TypeError, ValueError):
        logger.warning(f"Ignoring incomplete geo point {value}")
        return None


def _read_polygon(value: Any) -> Tuple[List[GeoPoint], Optional[GeoPoint]]:
    """Polygon vertices and inner point from either polygon representation."""
    if isinstance(value, dict):
        vertices = [_read_point(point) for point in value.get('polygonPoints') or []]
        return [v for v in vertices if v is not None], _read_point(value.get('inPolygonPoint'))

    # REST API form: [{"polygonPoint": {...}}, ..., {"inPolygonPoint": {...}}]
    vertices = []
    inner = None
    for item in value or []:
        if not isinstance(item, dict):
            continue
        if 'polygonPoint' in item:
            point = _read_point(item['polygonPoint'])
            if point is not None:
                vertices.append(point)
        elif 'inPolygonPoint' in item:
            inner = _read_point(item['inPolygonPoint'])
    return vertices, inner


def _list(attributes: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    return [entry for entry in attributes.get(key) or [] if isinstance(entry, dict)]
