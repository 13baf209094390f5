"""Export of ResourceGraphs as DataCite JSON (REST API envelope) and DataCite XML."""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from datacite_engine.api.schema_validator import SchemaValidationFailure, SchemaValidator
from datacite_engine.models import (
    AgentKind,
    ContributorRole,
    ResourceGraph,
    Size,
)
from datacite_engine.utils.date_resolver import DateResolver
from datacite_engine.utils.name_parser import orcid_url


logger = logging.getLogger(__name__)


DATACITE_NAMESPACE = "http://datacite.org/schema/kernel-4"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"
SCHEMA_LOCATION = "http://datacite.org/schema/kernel-4 https://schema.datacite.org/meta/kernel-4.6/metadata.xsd"
SCHEMA_VERSION_URI = "http://datacite.org/schema/kernel-4"

DEFAULT_PUBLISHER = "GFZ Data Services"
DEFAULT_LANGUAGE = "en"
SAMPLE_RESOURCE_TYPE = "Physical Object"
UNKNOWN_NAME = "Unknown"

NAME_IDENTIFIER_SCHEME_URIS = {
    'ORCID': 'https://orcid.org',
    'ROR': 'https://ror.org',
    'ISNI': 'https://isni.org',
    'GRID': 'https://www.grid.ac',
}

SPDX_SCHEME_URI = "https://spdx.org/licenses/"

SUPPORTED_FORMATS = ("json", "xml")

UNSAFE_FILENAME_CHARS = re.compile(r'[^a-zA-Z0-9._-]')

ET.register_namespace('', DATACITE_NAMESPACE)
ET.register_namespace('xsi', XSI_NAMESPACE)


@dataclass
class SerializationResult:
    """
    Outcome of serialize(): either a document or the validation errors, never both.

    document is a dict for JSON and a string for XML.
    """
    format: str
    document: Optional[Union[Dict[str, Any], str]] = None
    filename: Optional[str] = None
    message: Optional[str] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    schema_version: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.document is not None

    def to_error_document(self) -> Dict[str, Any]:
        """Error document for failed exports."""
        return {
            'success': False,
            'message': self.message,
            'filename': self.filename,
            'errors': self.errors,
            'schema_version': self.schema_version,
        }


class DataCiteSerializer:
    """Serializes ResourceGraphs to DataCite 4.6 JSON and XML."""

    def __init__(
        self,
        date_resolver: Optional[DateResolver] = None,
        validator: Optional[SchemaValidator] = None,
        default_publisher: str = DEFAULT_PUBLISHER,
        default_language: str = DEFAULT_LANGUAGE,
        strict: bool = False
    ):
        """
        Initialize the serializer.

        Args:
            date_resolver: Resolver used to render date ranges
            validator: JSON Schema validator for the exported attributes
            default_publisher: Publisher name used when the graph has none
            default_language: Language exported for samples without language
            strict: Require identifiers (registration mode) by default
        """
        self.date_resolver = date_resolver or DateResolver()
        self.validator = validator or SchemaValidator()
        self.default_publisher = default_publisher
        self.default_language = default_language
        self.strict = strict

    @classmethod
    def from_config(cls, config) -> 'DataCiteSerializer':
        """Create a serializer from an EngineConfig."""
        return cls(
            date_resolver=DateResolver(config.timezone_fallback),
            default_publisher=config.default_publisher,
            default_language=config.default_language,
            strict=config.strict_validation,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    def serialize(self, graph: ResourceGraph, format: str = "json", strict: Optional[bool] = None) -> SerializationResult:
        """
        Serialize a graph after validating its JSON form.

        XML is only produced when the JSON form of the same graph validates,
        so no partially valid document is ever returned.

        Args:
            graph: Resource to export
            format: "json" or "xml"
            strict: Override of the registration mode

        Returns:
            SerializationResult with document, or with errors and schema version

        Raises:
            ValueError: If the format is not supported
        """
        if format not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported export format: {format}")

        filename = self.export_filename(graph, format)
        attributes = self.to_json_attributes(graph)

        try:
            self.validator.validate(attributes, self.strict if strict is None else strict)
        except SchemaValidationFailure as e:
            logger.warning(f"Export of {graph.identifier or filename} rejected: {len(e.errors)} schema errors")
            return SerializationResult(
                format=format,
                filename=filename,
                message=e.message,
                errors=e.errors,
                schema_version=e.schema_version,
            )

        if format == "json":
            document = {'data': {'type': 'dois', 'attributes': attributes}}
        else:
            document = self._render_xml(attributes)

        logger.info(f"Exported {graph.identifier or filename} as {format.upper()}")
        return SerializationResult(format=format, document=document, filename=filename)

    def to_json_document(self, graph: ResourceGraph) -> Dict[str, Any]:
        """JSON envelope without validation."""
        return {'data': {'type': 'dois', 'attributes': self.to_json_attributes(graph)}}

    def to_xml(self, graph: ResourceGraph) -> str:
        """XML document without validation."""
        return self._render_xml(self.to_json_attributes(graph))

    @staticmethod
    def export_filename(graph: ResourceGraph, format: str) -> str:
        """
        File name for a downloaded export.

        Samples get an "igsn-" prefix. Characters outside [a-zA-Z0-9._-] are
        replaced by '-'; resources without identifier use "resource-<id>".
        """
        if graph.identifier:
            base = graph.identifier
        else:
            base = f"resource-{graph.resource_id if graph.resource_id is not None else 'unknown'}"
        safe = UNSAFE_FILENAME_CHARS.sub('-', base)
        prefix = "igsn-" if graph.is_sample else ""
        return f"{prefix}{safe}.{format}"

    # =========================================================================
    # JSON attributes
    # =========================================================================

    def to_json_attributes(self, graph: ResourceGraph) -> Dict[str, Any]:
        """
        Build the DataCite attributes object.

        Required keys come first in fixed order, optional keys are only
        present when they have content.
        """
        attributes: Dict[str, Any] = {
            'titles': self._build_titles(graph),
            'publisher': {'name': graph.publisher or self.default_publisher},
        }
        if graph.publication_year is not None:
            attributes['publicationYear'] = str(graph.publication_year)
        attributes['types'] = self._build_types(graph)
        attributes['creators'] = self._build_creators(graph)
        attributes['schemaVersion'] = SCHEMA_VERSION_URI

        if graph.identifier:
            attributes['identifiers'] = [{'identifier': graph.identifier, 'identifierType': 'DOI'}]
            attributes['doi'] = graph.identifier

        optional = [
            ('contributors', self._build_contributors(graph)),
            ('subjects', self._build_subjects(graph)),
            ('descriptions', self._build_descriptions(graph)),
            ('dates', self._build_dates(graph)),
            ('language', graph.language or (self.default_language if graph.is_sample else None)),
            ('version', graph.version),
            ('rightsList', self._build_rights(graph)),
            ('geoLocations', self._build_geo_locations(graph)),
            ('alternateIdentifiers', self._build_alternate_identifiers(graph)),
            ('relatedIdentifiers', self._build_related_identifiers(graph)),
            ('sizes', [format_size(size) for size in graph.sizes]),
            ('fundingReferences', self._build_funding_references(graph)),
        ]
        for key, value in optional:
            if value:
                attributes[key] = value

        return attributes

    @staticmethod
    def _build_titles(graph: ResourceGraph) -> List[Dict[str, Any]]:
        titles = []
        for title in graph.titles:
            if not title.value:
                continue
            entry = {'title': title.value}
            if title.title_type and title.title_type != "MainTitle":
                entry['titleType'] = title.title_type
            if title.lang:
                entry['lang'] = title.lang
            titles.append(entry)
        return titles

    @staticmethod
    def _build_types(graph: ResourceGraph) -> Dict[str, str]:
        types = {'resourceTypeGeneral': graph.resource_type_general}
        if graph.is_sample:
            parts = [part for part in (graph.sample_type, graph.material) if part]
            types['resourceType'] = ": ".join(parts) if parts else SAMPLE_RESOURCE_TYPE
        elif graph.resource_type:
            types['resourceType'] = graph.resource_type
        return types

    def _build_creators(self, graph: ResourceGraph) -> List[Dict[str, Any]]:
        creators = [
            self._build_name_entry(link.agent, link.affiliations)
            for link in sorted(graph.creators, key=lambda link: link.position)
        ]
        if not creators:
            logger.debug(f"No creators for {graph.identifier}, exporting placeholder")
            creators.append({'name': UNKNOWN_NAME, 'nameType': 'Personal'})
        return creators

    def _build_contributors(self, graph: ResourceGraph) -> List[Dict[str, Any]]:
        contributors = []
        for link in sorted(graph.contributors, key=lambda link: link.position):
            types = []
            for role in link.roles:
                if role is ContributorRole.CREATOR:
                    continue
                if role.datacite_type not in types:
                    types.append(role.datacite_type)
            if not types:
                types.append(ContributorRole.OTHER.value)

            for contributor_type in types:
                entry = self._build_name_entry(link.agent, link.affiliations)
                entry['contributorType'] = contributor_type
                contributors.append(entry)
        return contributors

    @staticmethod
    def _build_name_entry(agent, affiliations) -> Dict[str, Any]:
        entry: Dict[str, Any] = {}

        if agent.kind is AgentKind.PERSON:
            entry['name'] = agent.display_name or UNKNOWN_NAME
            entry['nameType'] = 'Personal'
            if agent.given_name is not None:
                entry['givenName'] = agent.given_name
            if agent.family_name is not None:
                entry['familyName'] = agent.family_name
        else:
            entry['name'] = agent.name or UNKNOWN_NAME
            entry['nameType'] = 'Organizational'

        if agent.identifier:
            scheme = agent.identifier_scheme or ('ORCID' if agent.is_person else 'ROR')
            identifier = agent.identifier
            if scheme == 'ORCID':
                identifier = orcid_url(identifier) or identifier
            name_identifier = {'nameIdentifier': identifier, 'nameIdentifierScheme': scheme}
            if scheme in NAME_IDENTIFIER_SCHEME_URIS:
                name_identifier['schemeUri'] = NAME_IDENTIFIER_SCHEME_URIS[scheme]
            entry['nameIdentifiers'] = [name_identifier]

        affiliation_entries = []
        for affiliation in affiliations:
            if not affiliation.name:
                continue
            affiliation_entry = {'name': affiliation.name}
            if affiliation.identifier:
                affiliation_entry['affiliationIdentifier'] = affiliation.identifier
                affiliation_entry['affiliationIdentifierScheme'] = affiliation.identifier_scheme or 'ROR'
                scheme_uri = affiliation.scheme_uri or NAME_IDENTIFIER_SCHEME_URIS.get(
                    affiliation_entry['affiliationIdentifierScheme'])
                if scheme_uri:
                    affiliation_entry['schemeURI'] = scheme_uri
            affiliation_entries.append(affiliation_entry)
        if affiliation_entries:
            entry['affiliation'] = affiliation_entries

        return entry

    @staticmethod
    def _build_subjects(graph: ResourceGraph) -> List[Dict[str, Any]]:
        subjects = []
        for subject in graph.subjects:
            entry = {'subject': subject.value}
            if subject.subject_scheme:
                entry['subjectScheme'] = subject.subject_scheme
            if subject.scheme_uri:
                entry['schemeUri'] = subject.scheme_uri
            if subject.value_uri:
                entry['valueUri'] = subject.value_uri
            subjects.append(entry)
        return subjects

    @staticmethod
    def _build_descriptions(graph: ResourceGraph) -> List[Dict[str, Any]]:
        descriptions = []
        for description in graph.descriptions:
            if not description.value:
                continue
            entry = {'description': description.value, 'descriptionType': description.description_type}
            if description.lang:
                entry['lang'] = description.lang
            descriptions.append(entry)
        return descriptions

    def _build_dates(self, graph: ResourceGraph) -> List[Dict[str, Any]]:
        dates = []
        for resource_date in graph.dates:
            value = self.date_resolver.render(resource_date.start, resource_date.end)
            if value is None:
                continue
            entry = {'dateType': resource_date.date_type, 'date': value}
            if resource_date.date_information:
                entry['dateInformation'] = resource_date.date_information
            dates.append(entry)
        return dates

    @staticmethod
    def _build_rights(graph: ResourceGraph) -> List[Dict[str, Any]]:
        rights_list = []
        for rights in graph.rights:
            entry = {'rights': rights.name}
            if rights.uri:
                entry['rightsURI'] = rights.uri
            if rights.identifier:
                entry['rightsIdentifier'] = rights.identifier
                entry['rightsIdentifierScheme'] = 'SPDX'
                entry['schemeURI'] = rights.scheme_uri or SPDX_SCHEME_URI
            rights_list.append(entry)
        return rights_list

    @staticmethod
    def _build_geo_locations(graph: ResourceGraph) -> List[Dict[str, Any]]:
        geo_locations = []
        for geo_location in graph.geo_locations:
            if geo_location.is_empty:
                continue
            entry: Dict[str, Any] = {}
            if geo_location.place:
                entry['geoLocationPlace'] = geo_location.place
            if geo_location.variant == "point":
                entry['geoLocationPoint'] = _point(geo_location.point)
            elif geo_location.variant == "box":
                box = geo_location.box
                entry['geoLocationBox'] = {
                    'westBoundLongitude': box.west_bound_longitude,
                    'eastBoundLongitude': box.east_bound_longitude,
                    'southBoundLatitude': box.south_bound_latitude,
                    'northBoundLatitude': box.north_bound_latitude,
                }
            elif geo_location.variant == "polygon":
                polygon: Dict[str, Any] = {
                    'polygonPoints': [_point(point) for point in geo_location.polygon_points],
                }
                if geo_location.in_polygon_point is not None:
                    polygon['inPolygonPoint'] = _point(geo_location.in_polygon_point)
                entry['geoLocationPolygon'] = polygon
            geo_locations.append(entry)
        return geo_locations

    @staticmethod
    def _build_alternate_identifiers(graph: ResourceGraph) -> List[Dict[str, str]]:
        return [
            {'alternateIdentifier': identifier.value, 'alternateIdentifierType': identifier.type}
            for identifier in graph.sample_alternate_identifiers()
        ]

    @staticmethod
    def _build_related_identifiers(graph: ResourceGraph) -> List[Dict[str, str]]:
        related = []
        for identifier in graph.related_identifiers:
            entry = {
                'relatedIdentifier': identifier.identifier,
                'relatedIdentifierType': identifier.identifier_type,
                'relationType': identifier.relation_type,
            }
            if identifier.resource_type_general:
                entry['resourceTypeGeneral'] = identifier.resource_type_general
            related.append(entry)
        return related

    @staticmethod
    def _build_funding_references(graph: ResourceGraph) -> List[Dict[str, str]]:
        funders = []
        for funder in graph.funding_references:
            entry = {'funderName': funder.funder_name}
            optional = [
                ('funderIdentifier', funder.funder_identifier),
                ('funderIdentifierType', funder.funder_identifier_type),
                ('schemeUri', funder.scheme_uri),
                ('awardNumber', funder.award_number),
                ('awardUri', funder.award_uri),
                ('awardTitle', funder.award_title),
            ]
            entry.update({key: value for key, value in optional if value})
            funders.append(entry)
        return funders

    # =========================================================================
    # XML
    # =========================================================================

    def _render_xml(self, attributes: Dict[str, Any]) -> str:
        """Render validated JSON attributes as a DataCite kernel-4 XML document."""
        root = ET.Element(_tag('resource'))
        root.set(f'{{{XSI_NAMESPACE}}}schemaLocation', SCHEMA_LOCATION)

        doi = attributes.get('doi')
        if doi:
            _sub(root, 'identifier', doi, identifierType='DOI')

        creators = _sub(root, 'creators')
        for creator in attributes['creators']:
            element = _sub(creators, 'creator')
            self._add_name_elements(element, creator, 'creatorName')

        titles = _sub(root, 'titles')
        for title in attributes['titles']:
            element = _sub(titles, 'title', title['title'], titleType=title.get('titleType'))
            if title.get('lang'):
                element.set(f'{{{XML_NAMESPACE}}}lang', title['lang'])

        publisher = attributes['publisher']
        _sub(root, 'publisher', publisher['name'] if isinstance(publisher, dict) else publisher)
        if 'publicationYear' in attributes:
            _sub(root, 'publicationYear', str(attributes['publicationYear']))

        types = attributes['types']
        _sub(root, 'resourceType', types.get('resourceType'), resourceTypeGeneral=types['resourceTypeGeneral'])

        if 'subjects' in attributes:
            subjects = _sub(root, 'subjects')
            for subject in attributes['subjects']:
                _sub(subjects, 'subject', subject['subject'],
                     subjectScheme=subject.get('subjectScheme'),
                     schemeURI=subject.get('schemeUri'),
                     valueURI=subject.get('valueUri'))

        if 'contributors' in attributes:
            contributors = _sub(root, 'contributors')
            for contributor in attributes['contributors']:
                element = _sub(contributors, 'contributor', contributorType=contributor['contributorType'])
                self._add_name_elements(element, contributor, 'contributorName')

        if 'dates' in attributes:
            dates = _sub(root, 'dates')
            for date in attributes['dates']:
                _sub(dates, 'date', date['date'], dateType=date['dateType'],
                     dateInformation=date.get('dateInformation'))

        if 'language' in attributes:
            _sub(root, 'language', attributes['language'])

        if 'alternateIdentifiers' in attributes:
            alternate = _sub(root, 'alternateIdentifiers')
            for identifier in attributes['alternateIdentifiers']:
                _sub(alternate, 'alternateIdentifier', identifier['alternateIdentifier'],
                     alternateIdentifierType=identifier['alternateIdentifierType'])

        if 'relatedIdentifiers' in attributes:
            related = _sub(root, 'relatedIdentifiers')
            for identifier in attributes['relatedIdentifiers']:
                _sub(related, 'relatedIdentifier', identifier['relatedIdentifier'],
                     relatedIdentifierType=identifier['relatedIdentifierType'],
                     relationType=identifier['relationType'],
                     resourceTypeGeneral=identifier.get('resourceTypeGeneral'))

        if 'sizes' in attributes:
            sizes = _sub(root, 'sizes')
            for size in attributes['sizes']:
                _sub(sizes, 'size', size)

        if 'version' in attributes:
            _sub(root, 'version', attributes['version'])

        if 'rightsList' in attributes:
            rights_list = _sub(root, 'rightsList')
            for rights in attributes['rightsList']:
                element = _sub(rights_list, 'rights', rights.get('rights'),
                               rightsURI=rights.get('rightsURI'),
                               rightsIdentifier=rights.get('rightsIdentifier'),
                               rightsIdentifierScheme=rights.get('rightsIdentifierScheme'),
                               schemeURI=rights.get('schemeURI'))
                if rights.get('lang'):
                    element.set(f'{{{XML_NAMESPACE}}}lang', rights['lang'])

        if 'descriptions' in attributes:
            descriptions = _sub(root, 'descriptions')
            for description in attributes['descriptions']:
                element = _sub(descriptions, 'description', description['description'],
                               descriptionType=description['descriptionType'])
                if description.get('lang'):
                    element.set(f'{{{XML_NAMESPACE}}}lang', description['lang'])

        if 'geoLocations' in attributes:
            geo_locations = _sub(root, 'geoLocations')
            for geo_location in attributes['geoLocations']:
                self._add_geo_location(_sub(geo_locations, 'geoLocation'), geo_location)

        if 'fundingReferences' in attributes:
            funders = _sub(root, 'fundingReferences')
            for funder in attributes['fundingReferences']:
                element = _sub(funders, 'fundingReference')
                _sub(element, 'funderName', funder['funderName'])
                if funder.get('funderIdentifier'):
                    _sub(element, 'funderIdentifier', funder['funderIdentifier'],
                         funderIdentifierType=funder.get('funderIdentifierType'),
                         schemeURI=funder.get('schemeUri'))
                if funder.get('awardNumber'):
                    _sub(element, 'awardNumber', funder['awardNumber'], awardURI=funder.get('awardUri'))
                if funder.get('awardTitle'):
                    _sub(element, 'awardTitle', funder['awardTitle'])

        ET.indent(root, space="  ")
        return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding='unicode')

    @staticmethod
    def _add_name_elements(parent: ET.Element, entry: Dict[str, Any], name_tag: str):
        _sub(parent, name_tag, entry['name'], nameType=entry.get('nameType'))
        if 'givenName' in entry:
            _sub(parent, 'givenName', entry['givenName'])
        if 'familyName' in entry:
            _sub(parent, 'familyName', entry['familyName'])
        for identifier in entry.get('nameIdentifiers', []):
            _sub(parent, 'nameIdentifier', identifier['nameIdentifier'],
                 nameIdentifierScheme=identifier['nameIdentifierScheme'],
                 schemeURI=identifier.get('schemeUri'))
        for affiliation in entry.get('affiliation', []):
            _sub(parent, 'affiliation', affiliation['name'],
                 affiliationIdentifier=affiliation.get('affiliationIdentifier'),
                 affiliationIdentifierScheme=affiliation.get('affiliationIdentifierScheme'),
                 schemeURI=affiliation.get('schemeURI'))

    @staticmethod
    def _add_geo_location(parent: ET.Element, geo_location: Dict[str, Any]):
        if 'geoLocationPlace' in geo_location:
            _sub(parent, 'geoLocationPlace', geo_location['geoLocationPlace'])
        if 'geoLocationPoint' in geo_location:
            _add_point(_sub(parent, 'geoLocationPoint'), geo_location['geoLocationPoint'])
        if 'geoLocationBox' in geo_location:
            box = _sub(parent, 'geoLocationBox')
            for key in ('westBoundLongitude', 'eastBoundLongitude', 'southBoundLatitude', 'northBoundLatitude'):
                _sub(box, key, _format_number(geo_location['geoLocationBox'][key]))
        if 'geoLocationPolygon' in geo_location:
            polygon = _sub(parent, 'geoLocationPolygon')
            for point in geo_location['geoLocationPolygon']['polygonPoints']:
                _add_point(_sub(polygon, 'polygonPoint'), point)
            if 'inPolygonPoint' in geo_location['geoLocationPolygon']:
                _add_point(_sub(polygon, 'inPolygonPoint'), geo_location['geoLocationPolygon']['inPolygonPoint'])


def format_size(size: Size) -> str:
    """
    Render a size as "<type>: <value> <unit>".

    The value is printed without trailing zeros; missing type or unit parts
    are left out.
    """
    value = _format_decimal(size.value)
    text = f"{value} {size.unit}" if size.unit else value
    return f"{size.type}: {text}" if size.type else text


def _format_decimal(value: Decimal) -> str:
    text = format(value.normalize(), 'f')
    return "0" if text in ("-0", "") else text


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _point(point) -> Dict[str, float]:
    return {'pointLongitude': point.longitude, 'pointLatitude': point.latitude}


def _add_point(parent: ET.Element, point: Dict[str, Any]):
    _sub(parent, 'pointLongitude', _format_number(point['pointLongitude']))
    _sub(parent, 'pointLatitude', _format_number(point['pointLatitude']))


def _tag(name: str) -> str:
    return f'{{{DATACITE_NAMESPACE}}}{name}'


def _sub(parent: ET.Element, name: str, text: Optional[str] = None, **attributes) -> ET.Element:
    """Append a DataCite element; attributes with None values are skipped."""
    element = ET.SubElement(parent, _tag(name))
    for key, value in attributes.items():
        if value is not None:
            element.set(key, str(value))
    if text is not None:
        element.text = str(text)
    return element
