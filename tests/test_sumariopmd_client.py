"""
Unit tests for SumarioPMDClient.
"""

import datetime

import pytest
from unittest.mock import MagicMock, patch
import pymysql

from datacite_engine.config import EngineConfig
from datacite_engine.db.sumariopmd_client import (
    ConnectionError,
    DatabaseError,
    SumarioPMDClient,
)
from datacite_engine.models import AgentKind, ContributorRole
from datacite_engine.utils.date_resolver import DateResolver


@pytest.fixture
def mock_pymysql_connect():
    """Mock PyMySQL connect function."""
    with patch('datacite_engine.db.sumariopmd_client.pymysql.connect') as mock:
        yield mock


@pytest.fixture
def cursor(mock_pymysql_connect):
    """Cursor returned by every connection."""
    connection = MagicMock()
    cursor = MagicMock()
    connection.cursor.return_value.__enter__.return_value = cursor
    mock_pymysql_connect.return_value = connection
    return cursor


@pytest.fixture
def client():
    """Client for a local test database."""
    return SumarioPMDClient("localhost", "sumario-pmd", "user", "pass")


def agent_row(order, roles, firstname=None, lastname=None, name=None, identifier=None,
              identifiertype=None, nametype="Personal", email=None, website=None):
    """Row as returned by fetch_agents_for_resource()."""
    return {
        'order': order,
        'firstname': firstname,
        'lastname': lastname,
        'name': name,
        'identifier': identifier,
        'identifiertype': identifiertype,
        'nametype': nametype,
        'roles': roles,
        'email': email,
        'website': website,
        'position': None,
    }


class TestClientInitialization:
    """Tests for SumarioPMDClient initialization."""

    def test_host_suffix_added_automatically(self):
        """Test that .gfz-potsdam.de suffix is added if missing."""
        client = SumarioPMDClient("rz-mysql3", "sumario-pmd", "user", "pass")

        assert client.host == "rz-mysql3.gfz-potsdam.de"

    def test_localhost_not_modified(self, client):
        """Test that localhost hostname is not modified."""
        assert client.host == "localhost"

    def test_from_config(self):
        """Test creation from configuration."""
        config = EngineConfig(db_host="localhost", db_name="db", db_username="u", db_password="p")

        assert SumarioPMDClient.from_config(config).database == "db"

    def test_from_incomplete_config(self):
        """Test that incomplete settings raise DatabaseError."""
        with pytest.raises(DatabaseError, match="incomplete"):
            SumarioPMDClient.from_config(EngineConfig(db_host="localhost"))


class TestConnectionManagement:
    """Tests for database connection management."""

    def test_connection_failure_raises_error(self, mock_pymysql_connect, client):
        """Test that connection failure raises ConnectionError."""
        mock_pymysql_connect.side_effect = pymysql.Error("Connection failed")

        with pytest.raises(ConnectionError, match="Database connection failed"):
            with client.get_connection():
                pass

    def test_connection_closed(self, mock_pymysql_connect, client):
        """Test that the connection is closed after use."""
        connection = MagicMock()
        mock_pymysql_connect.return_value = connection

        with client.get_connection() as conn:
            assert conn is connection

        connection.close.assert_called_once()

    def test_test_connection(self, cursor, client):
        """Test successful connection test."""
        cursor.fetchone.return_value = {'VERSION()': "8.0.36"}

        success, message = client.test_connection()

        assert success is True
        assert "8.0.36" in message

    def test_test_connection_failure(self, mock_pymysql_connect, client):
        """Test failed connection test."""
        mock_pymysql_connect.side_effect = pymysql.Error("Access denied")

        success, message = client.test_connection()

        assert success is False
        assert "Access denied" in message


class TestQueries:
    """Tests for single queries."""

    def test_get_resource_id_for_doi(self, cursor, client):
        """Test resource id lookup."""
        cursor.fetchall.return_value = [{'id': 42}]

        assert client.get_resource_id_for_doi("10.5880/GFZ.1") == 42
        assert cursor.execute.call_args[0][1] == ("10.5880/GFZ.1",)

    def test_get_resource_id_not_found(self, cursor, client):
        """Test that an unknown DOI returns None."""
        cursor.fetchall.return_value = []

        assert client.get_resource_id_for_doi("10.5880/unknown") is None

    def test_query_error(self, cursor, client):
        """Test that query errors raise DatabaseError."""
        cursor.execute.side_effect = pymysql.Error("syntax error")

        with pytest.raises(DatabaseError, match="Failed to fetch"):
            client.fetch_titles_for_resource(1)

    def test_fetch_agents_query(self, cursor, client):
        """Test that agents are fetched with grouped roles and contact info."""
        cursor.fetchall.return_value = [agent_row(1, "Creator", "Jane", "Doe")]

        agents = client.fetch_agents_for_resource(7)

        assert agents[0]['roles'] == "Creator"
        query = cursor.execute.call_args[0][0]
        assert "GROUP_CONCAT" in query
        assert "LEFT JOIN contactinfo" in query

    def test_fetch_existing_identifiers(self, cursor, client):
        """Test the duplicate check lookup."""
        cursor.fetchall.return_value = [{'identifier': "10.58052/GFZ.A1"}]

        existing = client.fetch_existing_identifiers(["10.58052/GFZ.A1", "10.58052/GFZ.A2", ""])

        assert existing == {"10.58052/GFZ.A1"}
        query, params = cursor.execute.call_args[0]
        assert "IN (%s, %s)" in query
        assert params == ("10.58052/GFZ.A1", "10.58052/GFZ.A2")

    def test_fetch_existing_identifiers_empty_input(self, cursor, client):
        """Test that no query is sent for an empty identifier list."""
        assert client.fetch_existing_identifiers([]) == set()
        cursor.execute.assert_not_called()


class TestLoadResourceGraph:
    """Tests for converting database rows into a ResourceGraph."""

    def setup_rows(self, cursor, agents, affiliations=None, dates=None, titles=None):
        cursor.fetchall.side_effect = [
            [{
                'id': 7,
                'identifier': "10.5880/GFZ.1.1.2021.001",
                'resourcetypegeneral': "Dataset",
                'publisher': "GFZ Data Services",
                'publicationyear': 2021,
                'version': "1.0",
                'language': "en",
            }],
            titles if titles is not None else [
                {'title': "Main title", 'titletype': None, 'language': "en"},
                {'title': "Alternative", 'titletype': "AlternativeTitle", 'language': None},
            ],
            dates if dates is not None else [],
            affiliations or [],
            agents,
        ]

    def test_scalars_and_titles(self, cursor, client):
        """Test resource attributes and title types."""
        self.setup_rows(cursor, [agent_row(1, "Creator", "Jane", "Doe")])

        graph = client.load_resource_graph(7)

        assert graph.identifier == "10.5880/GFZ.1.1.2021.001"
        assert graph.resource_id == 7
        assert graph.publication_year == 2021
        assert graph.version == "1.0"
        assert [(t.value, t.title_type) for t in graph.titles] == [
            ("Main title", "MainTitle"), ("Alternative", "AlternativeTitle")
        ]

    def test_missing_resource(self, cursor, client):
        """Test that an unknown resource id returns None."""
        cursor.fetchall.side_effect = [[]]

        assert client.load_resource_graph(99) is None

    def test_contact_author_collapsed(self, cursor, client):
        """Test that a point of contact with author role becomes one contact author."""
        self.setup_rows(
            cursor,
            agents=[
                agent_row(1, "Creator, pointOfContact", "Christoph", "Förste",
                          identifier="0000-0002-1825-0097", identifiertype="ORCID", email="foerste@gfz.de"),
                agent_row(2, "pointOfContact", "Christoph", "Foerste"),
                agent_row(3, "HostingInstitution", name="GFZ Data Services", nametype="Organizational"),
            ],
            affiliations=[
                {'resourceagent_order': 1, 'order': 1, 'name': "GFZ", 'identifier': "04z8jg394",
                 'identifiertype': "ROR"},
            ],
        )

        graph = client.load_resource_graph(7)

        assert len(graph.creators) == 1
        creator = graph.creators[0]
        assert creator.is_contact is True
        assert creator.email == "foerste@gfz.de"
        assert creator.agent.identifier == "0000-0002-1825-0097"
        assert creator.affiliations[0].identifier == "https://ror.org/04z8jg394"
        assert len(graph.contributors) == 1
        assert graph.contributors[0].agent.kind is AgentKind.INSTITUTION
        assert graph.contributors[0].roles == [ContributorRole.HOSTING_INSTITUTION]

    def test_dates_keep_precision(self, cursor, client):
        """Test that stored dates keep their granularity and invalid values are dropped."""
        self.setup_rows(
            cursor,
            agents=[agent_row(1, "Creator", "Jane", "Doe")],
            dates=[
                {'datetype': "Collected", 'start': "2020-05", 'end': "2020-06"},
                {'datetype': "Created", 'start': datetime.date(2021, 3, 1), 'end': None},
                {'datetype': "Other", 'start': "2021-13", 'end': None},
            ],
        )

        graph = client.load_resource_graph(7, DateResolver())

        assert [(d.date_type, d.start, d.end) for d in graph.dates] == [
            ("Collected", "2020-05", "2020-06"),
            ("Created", "2021-03-01", None),
        ]


class TestRowConversion:
    """Tests for the static row converters."""

    def test_candidate_roles_mapped(self):
        """Test that legacy role labels are mapped and de-duplicated."""
        candidate = SumarioPMDClient.candidate_from_row(
            agent_row(1, "Creator, pointOfContact, Creator", "Jane", "Doe"), []
        )

        assert candidate.roles == [ContributorRole.CREATOR, ContributorRole.POINT_OF_CONTACT]

    def test_name_only_person(self):
        """Test that a person stored only with a combined name is split."""
        candidate = SumarioPMDClient.candidate_from_row(agent_row(1, "Creator", name="Doe, Jane"), [])

        assert (candidate.family_name, candidate.given_name) == ("Doe", "Jane")
