"""
SumarioPMD Database Client - read access to the legacy GFZ metadata database.

Provides the rows of one resource (agents with roles and contact info,
affiliations, dates, titles) and converts them into a ResourceGraph, running
the same identity and date resolution as the other input sources.

Table Structure:
- resource: DOI storage (identifier field) and scalar metadata
- resourceagent: Person/institution data (firstname, lastname, name, identifier=ORCID/ROR)
- role: Maps resourceagent to role labels (Creator, pointOfContact, DataCurator, ...)
- contactinfo: Email/Website/Position of contact persons
- affiliation: Affiliations per resourceagent (name, identifier=ROR)
- date: Dated events (datetype, start, end)
- title: Titles (titletype NULL = main title)
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pymysql
from pymysql.cursors import DictCursor

from datacite_engine.models import (
    Affiliation,
    Agent,
    AgentKind,
    ContributorRole,
    ResourceDate,
    ResourceGraph,
    Title,
)
from datacite_engine.utils.date_resolver import DateResolver
from datacite_engine.utils.identity_resolver import CandidateAgent, resolve
from datacite_engine.utils.name_parser import canonicalize_orcid, canonicalize_ror


logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Base exception for database operations."""
    pass


class ConnectionError(DatabaseError):
    """Exception raised when database connection fails."""
    pass


class SumarioPMDClient:
    """
    Read-only client for the SUMARIOPMD database.

    Role labels are stored as free text (including the GFZ-internal
    "pointOfContact") and mapped through ContributorRole.from_label().
    """

    def __init__(self, host: str, database: str, username: str, password: str):
        """
        Initialize database client with connection parameters.

        Args:
            host: Database host (e.g., rz-mysql3.gfz-potsdam.de)
            database: Database name (sumario-pmd)
            username: Database username
            password: Database password
        """
        self.host = host
        self.database = database
        self.username = username
        self.password = password

        # Add .gfz-potsdam.de suffix if not present
        if not self.host.endswith('.gfz-potsdam.de') and not self.host.startswith('localhost'):
            self.host = f"{self.host}.gfz-potsdam.de"

        logger.info(f"SumarioPMDClient initialized for {self.host}/{self.database} using PyMySQL")

    @classmethod
    def from_config(cls, config) -> 'SumarioPMDClient':
        """
        Create a client from an EngineConfig.

        Raises:
            DatabaseError: If the database settings are incomplete
        """
        if not config.has_database:
            raise DatabaseError("Database settings are incomplete (DB_SUMARIOPMD_* variables)")
        return cls(config.db_host, config.db_name, config.db_username, config.db_password)

    @contextmanager
    def get_connection(self):
        """
        Context manager for getting database connection.

        Yields:
            connection: PyMySQL connection

        Raises:
            ConnectionError: If connection cannot be established
        """
        connection = None
        try:
            connection = pymysql.connect(
                host=self.host,
                database=self.database,
                user=self.username,
                password=self.password,
                connect_timeout=10,
                charset='utf8mb4',
                cursorclass=DictCursor  # Return results as dictionaries
            )
        except pymysql.Error as e:
            logger.error(f"Failed to connect to database: {e}")
            raise ConnectionError(f"Database connection failed: {e}") from e

        try:
            yield connection
        finally:
            if connection:
                connection.close()

    def test_connection(self) -> Tuple[bool, str]:
        """
        Test database connection.

        Returns:
            Tuple of (success: bool, message: str)
        """
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT VERSION()")
                    result = cursor.fetchone()
                    version = result['VERSION()']
                    message = f"Connected to MySQL {version}"
                    logger.info(message)
                    return True, message
        except DatabaseError as e:
            message = f"Connection failed: {str(e)}"
            logger.error(message)
            return False, message

    def _fetch_all(self, query: str, params: Tuple, what: str) -> List[Dict[str, Any]]:
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute(query, params)
                    rows = cursor.fetchall()
                    logger.debug(f"Fetched {len(rows)} {what}")
                    return list(rows)
        except pymysql.Error as e:
            logger.error(f"Database error fetching {what}: {e}")
            raise DatabaseError(f"Failed to fetch {what}: {e}") from e

    def get_resource_id_for_doi(self, doi: str) -> Optional[int]:
        """
        Get resource_id for a given DOI.

        Args:
            doi: DOI string (e.g., "10.5880/gfz_orbit/rso/gnss_g_v02")

        Returns:
            Resource ID (int) or None if not found

        Raises:
            DatabaseError: If query fails
        """
        query = """
            SELECT id
            FROM resource
            WHERE identifier = %s
            LIMIT 1
        """

        rows = self._fetch_all(query, (doi,), f"resource_id for {doi}")
        if rows:
            resource_id = rows[0]['id']
            logger.debug(f"Found resource_id {resource_id} for DOI {doi}")
            return resource_id

        logger.warning(f"No resource found for DOI {doi}")
        return None

    def fetch_resource(self, resource_id: int) -> Optional[Dict[str, Any]]:
        """
        Fetch the scalar metadata of a resource.

        Returns:
            Row with identifier, resourcetypegeneral, publisher,
            publicationyear, version, language; None if not found

        Raises:
            DatabaseError: If query fails
        """
        query = """
            SELECT
                id,
                identifier,
                resourcetypegeneral,
                publisher,
                publicationyear,
                version,
                language
            FROM resource
            WHERE id = %s
            LIMIT 1
        """
        rows = self._fetch_all(query, (resource_id,), f"resource {resource_id}")
        return rows[0] if rows else None

    def fetch_agents_for_resource(self, resource_id: int) -> List[Dict[str, Any]]:
        """
        Fetch all resourceagents of a resource with their roles and contact info.

        Every agent appears once; its roles are returned as comma-separated
        list in the order they were assigned.

        Args:
            resource_id: Resource ID from resource table

        Returns:
            List of agent dictionaries with keys:
            - order: int (position in the agent list)
            - firstname, lastname, name: str or None
            - identifier: str or None (ORCID or ROR)
            - identifiertype: str or None
            - nametype: str or None ("Personal" / "Organizational")
            - roles: str (comma-separated role labels)
            - email, website, position: str or None (from contactinfo)

        Raises:
            DatabaseError: If query fails
        """
        query = """
            SELECT
                ra.order AS `order`,
                ra.firstname,
                ra.lastname,
                ra.name,
                ra.identifier,
                ra.identifiertype,
                ra.nametype,
                GROUP_CONCAT(DISTINCT r.role ORDER BY r.role SEPARATOR ', ') AS roles,
                ci.email,
                ci.website,
                ci.position
            FROM resourceagent ra
            INNER JOIN role r
                ON r.resourceagent_resource_id = ra.resource_id
                AND r.resourceagent_order = ra.order
            LEFT JOIN contactinfo ci
                ON ci.resourceagent_resource_id = ra.resource_id
                AND ci.resourceagent_order = ra.order
            WHERE ra.resource_id = %s
            GROUP BY ra.resource_id, ra.order, ra.firstname, ra.lastname,
                     ra.name, ra.identifier, ra.identifiertype, ra.nametype,
                     ci.email, ci.website, ci.position
            ORDER BY ra.order ASC
        """
        agents = self._fetch_all(query, (resource_id,), f"agents for resource_id {resource_id}")
        logger.info(f"Fetched {len(agents)} agents for resource_id {resource_id}")
        return agents

    def fetch_affiliations_for_resource(self, resource_id: int) -> List[Dict[str, Any]]:
        """
        Fetch all affiliations of the agents of a resource.

        Returns:
            Rows with resourceagent_order, order, name, identifier, identifiertype

        Raises:
            DatabaseError: If query fails
        """
        query = """
            SELECT
                resourceagent_order,
                `order`,
                name,
                identifier,
                identifiertype
            FROM affiliation
            WHERE resourceagent_resource_id = %s
            ORDER BY resourceagent_order ASC, `order` ASC
        """
        return self._fetch_all(query, (resource_id,), f"affiliations for resource_id {resource_id}")

    def fetch_dates_for_resource(self, resource_id: int) -> List[Dict[str, Any]]:
        """
        Fetch the dated events of a resource.

        Returns:
            Rows with datetype, start, end (strings or date/datetime values)

        Raises:
            DatabaseError: If query fails
        """
        query = """
            SELECT
                datetype,
                start,
                end
            FROM date
            WHERE resource_id = %s
            ORDER BY id ASC
        """
        return self._fetch_all(query, (resource_id,), f"dates for resource_id {resource_id}")

    def fetch_titles_for_resource(self, resource_id: int) -> List[Dict[str, Any]]:
        """
        Fetch the non-empty titles of a resource.

        Returns:
            Rows with title, titletype (NULL for the main title), language

        Raises:
            DatabaseError: If query fails
        """
        query = """
            SELECT
                title,
                titletype,
                language
            FROM title
            WHERE resource_id = %s
                AND title IS NOT NULL
                AND title != ''
            ORDER BY id ASC
        """
        return self._fetch_all(query, (resource_id,), f"titles for resource_id {resource_id}")

    def fetch_existing_identifiers(self, identifiers: Optional[Iterable[str]] = None) -> Set[str]:
        """
        Fetch identifiers already stored in the resource table.

        Args:
            identifiers: Restrict the lookup to these identifiers (e.g. the
                IGSNs of an upload); None fetches all

        Returns:
            Set of stored identifiers

        Raises:
            DatabaseError: If query fails
        """
        if identifiers is not None:
            wanted = [identifier for identifier in identifiers if identifier]
            if not wanted:
                return set()
            placeholders = ', '.join(['%s'] * len(wanted))
            query = f"SELECT identifier FROM resource WHERE identifier IN ({placeholders})"
            params = tuple(wanted)
        else:
            query = "SELECT identifier FROM resource WHERE identifier IS NOT NULL"
            params = ()

        rows = self._fetch_all(query, params, "existing identifiers")
        return {row['identifier'] for row in rows if row.get('identifier')}

    def load_resource_graph(
        self,
        resource_id: int,
        date_resolver: Optional[DateResolver] = None,
        existing_agents: Optional[Iterable[Agent]] = None
    ) -> Optional[ResourceGraph]:
        """
        Read a resource and convert it into a ResourceGraph.

        Agents are resolved into authors and contributors (an author that is
        also point of contact becomes one contact author). Dates keep the
        precision they are stored with.

        Args:
            resource_id: Resource ID from resource table
            date_resolver: Resolver used to validate stored date values
            existing_agents: Persisted agents that may be reused

        Returns:
            ResourceGraph, or None if the resource does not exist

        Raises:
            DatabaseError: If a query fails
        """
        resolver = date_resolver or DateResolver()

        resource = self.fetch_resource(resource_id)
        if resource is None:
            logger.warning(f"Resource {resource_id} not found")
            return None

        graph = ResourceGraph(
            identifier=resource.get('identifier') or None,
            resource_id=resource_id,
            resource_type_general=resource.get('resourcetypegeneral') or "Dataset",
            publisher=resource.get('publisher') or None,
            version=resource.get('version') or None,
            language=resource.get('language') or None,
        )
        if resource.get('publicationyear'):
            graph.publication_year = int(resource['publicationyear'])

        for row in self.fetch_titles_for_resource(resource_id):
            graph.titles.append(Title(
                value=row['title'],
                title_type=row.get('titletype') or "MainTitle",
                lang=row.get('language') or None,
            ))

        for row in self.fetch_dates_for_resource(resource_id):
            date = self.date_from_row(row, resolver)
            if date is not None:
                graph.dates.append(date)

        affiliations = self.group_affiliations(self.fetch_affiliations_for_resource(resource_id))
        candidates = [
            self.candidate_from_row(row, affiliations.get(row['order'], []))
            for row in self.fetch_agents_for_resource(resource_id)
        ]

        resolved = resolve(candidates, existing_agents)
        graph.creators, graph.contributors = resolved.to_links()

        logger.info(
            f"Loaded resource {resource_id} ({graph.identifier}): "
            f"{len(graph.creators)} creators, {len(graph.contributors)} contributors"
        )
        return graph

    @staticmethod
    def candidate_from_row(row: Dict[str, Any], affiliations: List[Affiliation]) -> CandidateAgent:
        """Convert an agent row of fetch_agents_for_resource() into a CandidateAgent."""
        roles = []
        for label in (row.get('roles') or '').split(','):
            if label.strip():
                role = ContributorRole.from_label(label.strip())
                if role not in roles:
                    roles.append(role)

        identifier = row.get('identifier') or None
        identifier_type = (row.get('identifiertype') or '').upper()
        is_institution = (row.get('nametype') or '') == 'Organizational' or (
            not row.get('firstname') and not row.get('lastname') and identifier_type == 'ROR'
        )

        if is_institution:
            return CandidateAgent(
                kind=AgentKind.INSTITUTION,
                name=row.get('name') or None,
                roles=roles,
                ror=canonicalize_ror(identifier) if identifier_type in ('', 'ROR') else None,
                email=row.get('email') or None,
                website=row.get('website') or None,
                affiliations=affiliations,
                position=row.get('order') or 0,
            )

        given = row.get('firstname') or None
        family = row.get('lastname') or None
        if not given and not family and row.get('name'):
            name = row['name']
            if ',' in name:
                family, given = [part.strip() or None for part in name.split(',', 1)]
            else:
                family = name.strip()

        return CandidateAgent(
            kind=AgentKind.PERSON,
            given_name=given,
            family_name=family,
            name=row.get('name') or None,
            roles=roles,
            orcid=canonicalize_orcid(identifier) if identifier_type in ('', 'ORCID') else None,
            email=row.get('email') or None,
            website=row.get('website') or None,
            affiliations=affiliations,
            position=row.get('order') or 0,
        )

    @staticmethod
    def group_affiliations(rows: List[Dict[str, Any]]) -> Dict[int, List[Affiliation]]:
        """Group affiliation rows by resourceagent_order."""
        grouped: Dict[int, List[Affiliation]] = {}
        for row in rows:
            if not row.get('name'):
                continue
            ror = canonicalize_ror(row.get('identifier'))
            grouped.setdefault(row['resourceagent_order'], []).append(Affiliation(
                name=row['name'],
                identifier=ror,
                identifier_scheme="ROR" if ror else None,
                scheme_uri="https://ror.org" if ror else None,
            ))
        return grouped

    @staticmethod
    def date_from_row(row: Dict[str, Any], resolver: DateResolver) -> Optional[ResourceDate]:
        """
        Convert a date row into a ResourceDate.

        Values are kept in their stored precision; values the resolver
        rejects are dropped with a warning.
        """
        values = []
        for key, is_end in (('start', False), ('end', True)):
            raw = row.get(key)
            if raw is None:
                values.append(None)
                continue
            text = raw.isoformat() if hasattr(raw, 'isoformat') else str(raw).strip()
            if not text:
                values.append(None)
            elif resolver.parse(text, is_end=is_end) is None:
                logger.warning(f"Ignoring invalid {row.get('datetype')} {key} date '{text}'")
                values.append(None)
            else:
                values.append(text)

        start, end = values
        if start is None and end is None:
            return None
        return ResourceDate(date_type=row.get('datetype') or "Other", start=start, end=end)
