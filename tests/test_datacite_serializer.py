"""Unit tests for DataCite JSON and XML export."""

import xml.etree.ElementTree as ET
from decimal import Decimal

import pytest

from datacite_engine.api.datacite_serializer import DataCiteSerializer, format_size
from datacite_engine.models import (
    Affiliation,
    Agent,
    AgentKind,
    ContributorLink,
    ContributorRole,
    CreatorLink,
    GeoBox,
    GeoLocation,
    GeoPoint,
    ResourceDate,
    ResourceGraph,
    Rights,
    Size,
    Title,
)
from datacite_engine.utils.date_resolver import DateResolver


NS = {'d': 'http://datacite.org/schema/kernel-4'}
ORCID = "0000-0002-1825-0097"


@pytest.fixture
def serializer():
    """Serializer in export (non-strict) mode."""
    return DataCiteSerializer(DateResolver())


@pytest.fixture
def sample():
    """Sample graph with one author."""
    return ResourceGraph(
        identifier="10.58052/GFZ.A1",
        identifier_type="IGSN",
        resource_type_general="PhysicalObject",
        publication_year=2021,
        sample_type="Core",
        material="Sedite",
        titles=[
            Title(value="Drill core A"),
            Title(value="CA-1", title_type="Other"),
            Title(value="CA-1-alt", title_type="Other"),
        ],
        dates=[ResourceDate(date_type="Collected", start="2021-05-01")],
        creators=[CreatorLink(
            agent=Agent(given_name="Christoph", family_name="Förste", identifier=ORCID, identifier_scheme="ORCID"),
            affiliations=[Affiliation(name="GFZ", identifier="https://ror.org/04z8jg394", identifier_scheme="ROR")],
            is_contact=True,
        )],
        geo_locations=[GeoLocation(place="Telegrafenberg", point=GeoPoint(longitude=13.06, latitude=52.38))],
        sizes=[Size(value=Decimal("0.9"), unit="m", type="Drilled Length")],
    )


class TestJsonExport:
    """Test the DataCite JSON attributes."""

    def test_resource_type_of_sample(self, serializer, sample):
        """Test that sample type and material form the resource type."""
        attributes = serializer.to_json_attributes(sample)

        assert attributes['types'] == {'resourceTypeGeneral': "PhysicalObject", 'resourceType': "Core: Sedite"}

    def test_resource_type_fallback(self, serializer, sample):
        """Test that a sample without type and material is a Physical Object."""
        sample.sample_type = None
        sample.material = None

        assert serializer.to_json_attributes(sample)['types']['resourceType'] == "Physical Object"

    def test_titles(self, serializer, sample):
        """Test that the main title carries no titleType."""
        titles = serializer.to_json_attributes(sample)['titles']

        assert titles[0] == {'title': "Drill core A"}
        assert titles[1] == {'title': "CA-1", 'titleType': "Other"}

    def test_creator_entry(self, serializer, sample):
        """Test name parts, ORCID URL and affiliation of a creator."""
        creator = serializer.to_json_attributes(sample)['creators'][0]

        assert creator['name'] == "Förste, Christoph"
        assert creator['nameType'] == "Personal"
        assert creator['givenName'] == "Christoph"
        assert creator['familyName'] == "Förste"
        assert creator['nameIdentifiers'] == [{
            'nameIdentifier': f"https://orcid.org/{ORCID}",
            'nameIdentifierScheme': "ORCID",
            'schemeUri': "https://orcid.org",
        }]
        assert creator['affiliation'][0]['affiliationIdentifier'] == "https://ror.org/04z8jg394"

    def test_unknown_creator_placeholder(self, serializer, sample):
        """Test that a resource without creators exports the Unknown placeholder."""
        sample.creators = []

        creators = serializer.to_json_attributes(sample)['creators']

        assert creators == [{'name': "Unknown", 'nameType': "Personal"}]

    def test_open_ended_date(self, serializer, sample):
        """Test that a date range without end has no trailing slash."""
        dates = serializer.to_json_attributes(sample)['dates']

        assert dates == [{'dateType': "Collected", 'date': "2021-05-01"}]

    def test_closed_date_range(self, serializer, sample):
        """Test that start and end are joined with a slash."""
        sample.dates[0].end = "2021-06-30"

        assert serializer.to_json_attributes(sample)['dates'][0]['date'] == "2021-05-01/2021-06-30"

    def test_sample_defaults(self, serializer, sample):
        """Test default publisher and language of samples."""
        attributes = serializer.to_json_attributes(sample)

        assert attributes['publisher'] == {'name': "GFZ Data Services"}
        assert attributes['language'] == "en"
        assert attributes['publicationYear'] == "2021"

    def test_alternate_identifiers_from_other_titles(self, serializer, sample):
        """Test that Other titles become alternate identifiers."""
        alternate = serializer.to_json_attributes(sample)['alternateIdentifiers']

        assert alternate == [
            {'alternateIdentifier': "CA-1", 'alternateIdentifierType': "Local accession number"},
            {'alternateIdentifier': "CA-1-alt", 'alternateIdentifierType': "Local sample name"},
        ]

    def test_dataset_has_no_alternate_identifiers(self, serializer, sample):
        """Test that non-sample resources do not derive alternate identifiers."""
        sample.identifier_type = "DOI"
        sample.resource_type_general = "Dataset"

        assert 'alternateIdentifiers' not in serializer.to_json_attributes(sample)

    def test_geo_point_and_size(self, serializer, sample):
        """Test geo location and size rendering."""
        attributes = serializer.to_json_attributes(sample)

        assert attributes['geoLocations'] == [{
            'geoLocationPlace': "Telegrafenberg",
            'geoLocationPoint': {'pointLongitude': 13.06, 'pointLatitude': 52.38},
        }]
        assert attributes['sizes'] == ["Drilled Length: 0.9 m"]

    def test_geo_box(self, serializer, sample):
        """Test that a bounding box is exported with its four bounds."""
        sample.geo_locations = [GeoLocation(box=GeoBox(12.0, 14.0, 51.0, 53.0))]

        box = serializer.to_json_attributes(sample)['geoLocations'][0]['geoLocationBox']

        assert box == {
            'westBoundLongitude': 12.0,
            'eastBoundLongitude': 14.0,
            'southBoundLatitude': 51.0,
            'northBoundLatitude': 53.0,
        }

    def test_contributors_one_entry_per_role(self, serializer, sample):
        """Test contributor type mapping including pointOfContact."""
        sample.contributors = [ContributorLink(
            agent=Agent(given_name="Jane", family_name="Doe"),
            roles=[ContributorRole.POINT_OF_CONTACT, ContributorRole.DATA_CURATOR, ContributorRole.CONTACT_PERSON],
        ), ContributorLink(
            agent=Agent(kind=AgentKind.INSTITUTION, name="GFZ", identifier="https://ror.org/04z8jg394",
                        identifier_scheme="ROR"),
            roles=[ContributorRole.HOSTING_INSTITUTION],
            position=1,
        )]

        contributors = serializer.to_json_attributes(sample)['contributors']

        assert [c['contributorType'] for c in contributors] == ["ContactPerson", "DataCurator", "HostingInstitution"]
        assert contributors[2]['nameType'] == "Organizational"
        assert contributors[2]['nameIdentifiers'][0]['nameIdentifierScheme'] == "ROR"

    def test_rights(self, serializer, sample):
        """Test SPDX rights entries."""
        sample.rights = [Rights(name="Creative Commons Attribution 4.0 International",
                                uri="https://creativecommons.org/licenses/by/4.0/", identifier="CC-BY-4.0")]

        rights = serializer.to_json_attributes(sample)['rightsList'][0]

        assert rights['rightsIdentifierScheme'] == "SPDX"
        assert rights['schemeURI'] == "https://spdx.org/licenses/"


class TestSerialize:
    """Test validated serialization."""

    def test_json_envelope(self, serializer, sample):
        """Test the JSON envelope and file name."""
        result = serializer.serialize(sample, "json")

        assert result.ok
        assert result.document['data']['type'] == "dois"
        assert result.document['data']['attributes']['doi'] == "10.58052/GFZ.A1"
        assert result.filename == "igsn-10.58052-GFZ.A1.json"

    def test_invalid_graph_returns_errors(self, serializer, sample):
        """Test that a graph without publication year yields errors instead of a document."""
        sample.publication_year = None

        result = serializer.serialize(sample, "xml")

        assert not result.ok
        assert result.document is None
        assert result.schema_version == "4.6"
        assert result.errors[0]['path'] == "/publicationYear"
        document = result.to_error_document()
        assert document['success'] is False
        assert document['filename'] == "igsn-10.58052-GFZ.A1.xml"

    def test_strict_mode_requires_identifier(self, sample):
        """Test that registration mode rejects resources without identifier."""
        sample.identifier = None
        serializer = DataCiteSerializer(DateResolver(), strict=True)

        result = serializer.serialize(sample, "json")

        assert not result.ok
        assert result.errors[-1]['path'] == "/identifiers"
        assert serializer.serialize(sample, "json", strict=False).ok

    def test_unsupported_format(self, serializer, sample):
        """Test that unknown formats raise ValueError."""
        with pytest.raises(ValueError, match="Unsupported export format"):
            serializer.serialize(sample, "csv")

    def test_filename_without_identifier(self, sample):
        """Test file names of resources without identifier."""
        sample.identifier = None
        sample.identifier_type = "DOI"
        sample.resource_type_general = "Dataset"
        sample.resource_id = 42

        assert DataCiteSerializer.export_filename(sample, "xml") == "resource-42.xml"


class TestXmlExport:
    """Test DataCite XML rendering."""

    def test_xml_structure(self, serializer, sample):
        """Test identifier, creator, resource type and point elements."""
        result = serializer.serialize(sample, "xml")

        assert result.document.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        root = ET.fromstring(result.document.split('\n', 1)[1])
        assert root.find('d:identifier', NS).text == "10.58052/GFZ.A1"
        assert root.find('d:identifier', NS).get('identifierType') == "DOI"
        assert root.find('d:creators/d:creator/d:creatorName', NS).text == "Förste, Christoph"
        assert root.find('d:resourceType', NS).text == "Core: Sedite"
        assert root.find('d:resourceType', NS).get('resourceTypeGeneral') == "PhysicalObject"
        assert root.find('d:geoLocations/d:geoLocation/d:geoLocationPoint/d:pointLatitude', NS).text == "52.38"
        assert root.find('d:dates/d:date', NS).text == "2021-05-01"
        assert root.find('d:sizes/d:size', NS).text == "Drilled Length: 0.9 m"

    def test_xml_escaping(self, serializer, sample):
        """Test that markup characters in text are escaped."""
        sample.titles[0] = Title(value='Core <A> & "B"')

        document = serializer.serialize(sample, "xml").document

        assert "Core &lt;A&gt; &amp;" in document
        root = ET.fromstring(document.split('\n', 1)[1])
        assert root.find('d:titles/d:title', NS).text == 'Core <A> & "B"'

    def test_xml_not_produced_when_invalid(self, serializer, sample):
        """Test that XML is never produced for invalid graphs."""
        sample.titles = []

        result = serializer.serialize(sample, "xml")

        assert result.document is None
        assert result.errors


class TestFormatSize:
    """Test size strings."""

    def test_trailing_zeros_removed(self):
        """Test that quantized values print without trailing zeros."""
        assert format_size(Size(value=Decimal("12.5000"), unit="cm", type="Core Diameter")) == "Core Diameter: 12.5 cm"
        assert format_size(Size(value=Decimal("100"), unit="g")) == "100 g"
        assert format_size(Size(value=Decimal("3"))) == "3"
