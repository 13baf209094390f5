"""
Builds ResourceGraphs from parsed IGSN CSV rows.

Rows are validated one by one; problems are collected as row-scoped
IngestionErrors instead of aborting the batch. Rows that share an IGSN
describe the same sample: the first row supplies the sample attributes, every
row contributes agent appearances, and all appearances are resolved together.
A sample with any rejected row is not built at all.
"""

import datetime
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from datacite_engine.models import (
    Affiliation,
    Agent,
    AgentKind,
    ContributorRole,
    Description,
    FundingReference,
    GeoLocation,
    GeoPoint,
    RelatedIdentifier,
    ResourceDate,
    ResourceGraph,
    Size,
    Title,
    derive_alternate_identifiers,
    split_size_label,
)
from datacite_engine.utils.csv_parser import CsvRow, ParsedCsv
from datacite_engine.utils.date_resolver import DateResolver
from datacite_engine.utils.identity_resolver import CandidateAgent, resolve
from datacite_engine.utils.name_parser import (
    canonicalize_orcid,
    canonicalize_ror,
    split_collector_name,
)


logger = logging.getLogger(__name__)


CODE_DUPLICATE_IGSN = "duplicate_igsn"
CODE_MISSING_REQUIRED_FIELD = "missing_required_field"
CODE_INVALID_DATE_COMPONENT = "invalid_date_component"
CODE_MALFORMED_INPUT = "malformed_input"
CODE_NO_VALID_ROWS = "no_valid_rows"

CATEGORY_CONFLICT = "conflict"
CATEGORY_VALIDATION = "validation"
CATEGORY_FORMAT = "format"

# Column -> label used in error messages
REQUIRED_FIELDS = {
    'igsn': 'IGSN',
    'title': 'Title',
    'name': 'Name',
}

DATE_COLUMNS = ('collection_start_date', 'collection_end_date')

PLACE_COLUMNS = ('city', 'province', 'country', 'location_description')

FUNDER_SCHEME_URIS = {
    'ROR': 'https://ror.org',
    'Crossref Funder ID': 'https://doi.org/10.13039/',
    'ISNI': 'https://isni.org',
    'GRID': 'https://www.grid.ac',
}


@dataclass
class IngestionError:
    """A row-scoped ingestion problem."""
    row: int
    identifier: Optional[str]
    category: str
    code: str
    message: str

    def to_dict(self) -> Dict[str, object]:
        return {
            'row': self.row,
            'identifier': self.identifier,
            'category': self.category,
            'code': self.code,
            'message': self.message,
        }


@dataclass
class BuildResult:
    """Outcome of one CSV batch."""
    graphs: List[ResourceGraph] = field(default_factory=list)
    errors: List[IngestionError] = field(default_factory=list)
    warnings: List[Dict[str, object]] = field(default_factory=list)

    @property
    def created(self) -> int:
        return len(self.graphs)

    @property
    def has_duplicates(self) -> bool:
        return any(error.code == CODE_DUPLICATE_IGSN for error in self.errors)


class _RowFormatError(Exception):
    """Raised internally when a cell cannot be converted."""
    pass


class ResourceGraphBuilder:
    """Converts IGSN CSV rows into ResourceGraphs."""

    def __init__(
        self,
        date_resolver: Optional[DateResolver] = None,
        publisher: Optional[str] = None
    ):
        """
        Initialize the builder.

        Args:
            date_resolver: Resolver used for collection dates
            publisher: Publisher name stored on every built sample
        """
        self.date_resolver = date_resolver or DateResolver()
        self.publisher = publisher

    def build(
        self,
        rows: Union[ParsedCsv, Iterable[CsvRow]],
        existing_identifiers: Optional[Iterable[str]] = None,
        existing_agents: Optional[Iterable[Agent]] = None
    ) -> BuildResult:
        """
        Build one ResourceGraph per IGSN found in the rows.

        Args:
            rows: ParsedCsv (its row errors and warnings are carried over) or
                plain CsvRows
            existing_identifiers: Identifiers already persisted; a row reusing
                one of them is rejected as duplicate (case-insensitive)
            existing_agents: Persisted agents that may be reused by identity
                resolution

        Returns:
            BuildResult with graphs, row errors and warnings
        """
        result = BuildResult()

        if isinstance(rows, ParsedCsv):
            for row_error in rows.row_errors:
                result.errors.append(IngestionError(
                    row=row_error['row'],
                    identifier=row_error.get('identifier') or None,
                    category=CATEGORY_FORMAT,
                    code=CODE_MALFORMED_INPUT,
                    message=str(row_error['message']),
                ))
            result.warnings.extend(rows.warnings)
            rows = rows.rows

        known = {identifier.strip().casefold() for identifier in (existing_identifiers or []) if identifier}
        agents = list(existing_agents or [])

        # identifier key -> (graph of first row, candidates of all rows)
        samples: Dict[str, Tuple[ResourceGraph, List[CandidateAgent]]] = {}
        rejected: Set[str] = set()

        for row in rows:
            identifier = row.get('igsn') or None
            key = identifier.casefold() if identifier else None

            row_errors = self._validate_row(row, identifier, known)
            graph = None
            candidates: List[CandidateAgent] = []

            if not row_errors:
                try:
                    graph = self._build_graph(row)
                    candidates = self._collect_candidates(row)
                except _RowFormatError as e:
                    row_errors.append(IngestionError(
                        row=row.row_number,
                        identifier=identifier,
                        category=CATEGORY_FORMAT,
                        code=CODE_MALFORMED_INPUT,
                        message=str(e),
                    ))

            if row_errors:
                for error in row_errors:
                    logger.warning(f"Row {error.row} rejected ({error.code}): {error.message}")
                result.errors.extend(row_errors)
                if key:
                    rejected.add(key)
                continue

            if key in samples:
                logger.debug(f"Row {row.row_number} adds agents to sample {identifier}")
                samples[key][1].extend(candidates)
            else:
                samples[key] = (graph, candidates)

        for key, (graph, candidates) in samples.items():
            if key in rejected:
                logger.info(f"Sample {graph.identifier} skipped because one of its rows was rejected")
                continue
            resolved = resolve(candidates, agents)
            graph.creators, graph.contributors = resolved.to_links()
            result.graphs.append(graph)

        logger.info(
            f"Built {len(result.graphs)} samples with {len(result.errors)} errors "
            f"and {len(result.warnings)} warnings"
        )
        return result

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate_row(
        self,
        row: CsvRow,
        identifier: Optional[str],
        known: Set[str]
    ) -> List[IngestionError]:
        errors = []

        for column, label in REQUIRED_FIELDS.items():
            if not row.get(column):
                errors.append(IngestionError(
                    row=row.row_number,
                    identifier=identifier,
                    category=CATEGORY_VALIDATION,
                    code=CODE_MISSING_REQUIRED_FIELD,
                    message=f"Required field '{label}' is missing",
                ))

        if identifier and identifier.casefold() in known:
            errors.append(IngestionError(
                row=row.row_number,
                identifier=identifier,
                category=CATEGORY_CONFLICT,
                code=CODE_DUPLICATE_IGSN,
                message=f"IGSN '{identifier}' already exists",
            ))

        for column in DATE_COLUMNS:
            raw = row.get(column).strip()
            if not raw or self.date_resolver.parse(raw, is_end=column.endswith('end_date')) is not None:
                continue
            if self.date_resolver.is_invalid_component(raw):
                errors.append(IngestionError(
                    row=row.row_number,
                    identifier=identifier,
                    category=CATEGORY_VALIDATION,
                    code=CODE_INVALID_DATE_COMPONENT,
                    message=f"Invalid month or day in '{column}': {raw}",
                ))
            else:
                errors.append(IngestionError(
                    row=row.row_number,
                    identifier=identifier,
                    category=CATEGORY_FORMAT,
                    code=CODE_MALFORMED_INPUT,
                    message=f"Unrecognized date format in '{column}': {raw}",
                ))

        return errors

    # =========================================================================
    # Graph assembly
    # =========================================================================

    def _build_graph(self, row: CsvRow) -> ResourceGraph:
        graph = ResourceGraph(
            identifier=row.get('igsn'),
            identifier_type="IGSN",
            resource_type_general="PhysicalObject",
            publisher=self.publisher,
            sample_type=row.get('sample_type') or None,
            material=row.get('material') or None,
        )

        graph.titles.append(Title(value=row.get('title'), title_type="MainTitle"))
        graph.titles.append(Title(value=row.get('name'), title_type="Other"))
        for other_name in row.split('sample_other_names'):
            graph.titles.append(Title(value=other_name, title_type="Other"))
        graph.alternate_identifiers = derive_alternate_identifiers(graph.other_titles())

        graph.classifications = row.split('classification')
        graph.geological_ages = row.split('geological_age')
        graph.geological_units = row.split('geological_unit')

        if row.get('description'):
            graph.descriptions.append(Description(value=row.get('description')))

        # kept at the precision given in the upload
        start = self._collection_date(row, 'collection_start_date')
        end = self._collection_date(row, 'collection_end_date', is_end=True)
        if start:
            graph.dates.append(ResourceDate(date_type="Collected", start=start, end=end))
        graph.publication_year = (
            self.date_resolver.extract_year(start) or datetime.date.today().year
        )

        graph.sizes = self._parse_sizes(row)

        geo_location = self._parse_geo_location(row)
        if geo_location is not None:
            graph.geo_locations.append(geo_location)

        graph.related_identifiers = self._parse_related_identifiers(row)
        graph.funding_references = self._parse_funding_references(row)

        return graph

    def _collection_date(self, row: CsvRow, column: str, is_end: bool = False) -> Optional[str]:
        raw = row.get(column).strip()
        if not raw or self.date_resolver.parse(raw, is_end=is_end) is None:
            return None
        return raw

    @staticmethod
    def _parse_sizes(row: CsvRow) -> List[Size]:
        sizes = []
        units = row.split('size_unit')
        for index, token in enumerate(row.split('size')):
            try:
                value = Decimal(token)
            except InvalidOperation as e:
                raise _RowFormatError(f"Size value '{token}' is not a number") from e
            if not value.is_finite():
                raise _RowFormatError(f"Size value '{token}' is not a number")
            size_type, unit = split_size_label(units[index] if index < len(units) else None)
            sizes.append(Size(value=value, unit=unit, type=size_type))
        return sizes

    @staticmethod
    def _parse_float(row: CsvRow, column: str) -> Optional[float]:
        raw = row.get(column)
        if not raw:
            return None
        try:
            return float(raw)
        except ValueError as e:
            raise _RowFormatError(f"Value of '{column}' is not a number: {raw}") from e

    def _parse_geo_location(self, row: CsvRow) -> Optional[GeoLocation]:
        latitude = self._parse_float(row, 'latitude')
        longitude = self._parse_float(row, 'longitude')

        point = None
        if latitude is not None and longitude is not None:
            if not -90 <= latitude <= 90:
                raise _RowFormatError(f"Latitude out of range: {latitude}")
            if not -180 <= longitude <= 180:
                raise _RowFormatError(f"Longitude out of range: {longitude}")
            point = GeoPoint(longitude=longitude, latitude=latitude)
        elif latitude is not None or longitude is not None:
            logger.warning(f"Row {row.row_number}: latitude and longitude must be given together, point skipped")

        parts = [row.get('locality') or row.get('primary_location_name')]
        parts.extend(row.get(column) for column in PLACE_COLUMNS)
        place = ", ".join(part for part in parts if part) or None

        geo_location = GeoLocation(
            place=place,
            point=point,
            elevation=self._parse_float(row, 'elevation'),
            elevation_unit=row.get('elevation_unit') or None,
        )
        return None if geo_location.is_empty else geo_location

    @staticmethod
    def _parse_related_identifiers(row: CsvRow) -> List[RelatedIdentifier]:
        related = []
        if row.get('parent_igsn'):
            related.append(RelatedIdentifier(
                identifier=row.get('parent_igsn'),
                identifier_type="IGSN",
                relation_type="IsPartOf",
            ))

        types = row.split_aligned('relatedIdentifierType')
        relations = row.split_aligned('relationType')
        for index, value in enumerate(row.split_aligned('relatedIdentifier')):
            if not value:
                continue
            related.append(RelatedIdentifier(
                identifier=value,
                identifier_type=_token(types, index) or "DOI",
                relation_type=_token(relations, index) or "References",
            ))
        return related

    @staticmethod
    def _parse_funding_references(row: CsvRow) -> List[FundingReference]:
        funders = []
        identifiers = row.split_aligned('funderIdentifier')
        identifier_types = row.split_aligned('funderIdentifierType')
        award_numbers = row.split_aligned('awardNumber')
        award_titles = row.split_aligned('awardTitle')

        for index, name in enumerate(row.split_aligned('funderName')):
            if not name:
                continue
            identifier = _token(identifiers, index)
            identifier_type = _token(identifier_types, index)
            if identifier and not identifier_type and canonicalize_ror(identifier):
                identifier_type = "ROR"
            funders.append(FundingReference(
                funder_name=name,
                funder_identifier=identifier,
                funder_identifier_type=identifier_type if identifier else None,
                scheme_uri=FUNDER_SCHEME_URIS.get(identifier_type) if identifier else None,
                award_number=_token(award_numbers, index),
                award_title=_token(award_titles, index),
            ))
        return funders

    # =========================================================================
    # Agents
    # =========================================================================

    def _collect_candidates(self, row: CsvRow) -> List[CandidateAgent]:
        candidates = []

        given, family = row.get('givenName') or None, row.get('familyName') or None
        if not given and not family:
            given, family = split_collector_name(row.get('collector'))

        if given or family:
            affiliations = []
            if row.get('affiliation'):
                ror = canonicalize_ror(row.get('ror'))
                affiliations.append(Affiliation(
                    name=row.get('affiliation'),
                    identifier=ror,
                    identifier_scheme="ROR" if ror else None,
                    scheme_uri="https://ror.org" if ror else None,
                ))
            role_label = row.get('collectorType')
            role = ContributorRole.from_label(role_label) if role_label else ContributorRole.CREATOR
            candidates.append(CandidateAgent(
                kind=AgentKind.PERSON,
                given_name=given,
                family_name=family,
                roles=[role],
                orcid=canonicalize_orcid(row.get('orcid')),
                email=row.get('email') or None,
                website=row.get('website') or None,
                affiliations=affiliations,
            ))

        types = row.split_aligned('contributorType')
        identifiers = row.split_aligned('identifier')
        identifier_types = row.split_aligned('identifierType')

        for index, name in enumerate(row.split_aligned('contributor')):
            if not name:
                continue
            role = ContributorRole.from_label(_token(types, index))
            identifier = _token(identifiers, index)
            identifier_type = (_token(identifier_types, index) or "").upper()

            if role.is_institution_only or identifier_type == "ROR":
                candidates.append(CandidateAgent(
                    kind=AgentKind.INSTITUTION,
                    name=name,
                    roles=[role],
                    ror=canonicalize_ror(identifier),
                ))
                continue

            contributor_given, contributor_family = split_collector_name(name)
            candidates.append(CandidateAgent(
                kind=AgentKind.PERSON,
                given_name=contributor_given,
                family_name=contributor_family,
                roles=[role],
                orcid=canonicalize_orcid(identifier) if identifier_type in ("", "ORCID") else None,
            ))

        for position, candidate in enumerate(candidates):
            candidate.position = position

        return candidates


def _token(tokens: List[str], index: int) -> Optional[str]:
    if index < len(tokens) and tokens[index]:
        return tokens[index]
    return None


def build_upload_response(result: BuildResult, filename: Optional[str] = None) -> Tuple[int, Dict[str, object]]:
    """
    Create the batch result document for an upload.

    Args:
        result: Outcome of ResourceGraphBuilder.build()
        filename: Name of the uploaded file

    Returns:
        Tuple (HTTP status, document); 422 with an error document when any
        row failed or nothing could be built, 200 otherwise
    """
    if result.errors:
        if result.has_duplicates:
            message = "Duplicate IGSN(s) found. Affected samples were not created."
        else:
            message = "Upload contains invalid rows. Affected samples were not created."
        return 422, {
            'success': False,
            'message': message,
            'filename': filename,
            'errors': [error.to_dict() for error in result.errors],
        }

    if not result.graphs:
        return 422, {
            'success': False,
            'message': "No valid rows found in file.",
            'filename': filename,
            'errors': [{
                'row': None,
                'identifier': None,
                'category': CATEGORY_VALIDATION,
                'code': CODE_NO_VALID_ROWS,
                'message': "No valid rows found in file.",
            }],
        }

    created = result.created
    return 200, {
        'success': True,
        'filename': filename,
        'created': created,
        'message': f"Successfully created {created} IGSN(s).",
    }
