"""DataCite API Client for importing DOI metadata."""

import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests
from requests.auth import HTTPBasicAuth

from datacite_engine.api.datacite_deserializer import DataCiteDeserializer, MalformedInputError
from datacite_engine.models import ResourceGraph
from datacite_engine.utils.date_resolver import DateResolver


logger = logging.getLogger(__name__)


class DataCiteAPIError(Exception):
    """Base exception for DataCite API errors."""
    pass


class AuthenticationError(DataCiteAPIError):
    """Raised when authentication fails."""
    pass


class NetworkError(DataCiteAPIError):
    """Raised when network connection fails."""
    pass


class DataCiteClient:
    """Client for reading DOI metadata from the DataCite REST API v2."""

    PRODUCTION_ENDPOINT = "https://api.datacite.org"
    TEST_ENDPOINT = "https://api.test.datacite.org"
    PAGE_SIZE = 100  # Maximum page size supported by DataCite API
    TIMEOUT = 30  # Request timeout in seconds
    HEADERS = {"Accept": "application/vnd.api+json"}

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_test_api: bool = False,
        date_resolver: Optional[DateResolver] = None
    ):
        """
        Initialize DataCite API client.

        Args:
            username: DataCite username (client-id); public metadata can be
                read without credentials
            password: DataCite password
            use_test_api: If True, use test API endpoint instead of production
            date_resolver: Resolver used when converting metadata to graphs
        """
        self.username = username
        self.password = password
        self.base_url = self.TEST_ENDPOINT if use_test_api else self.PRODUCTION_ENDPOINT
        self.auth = HTTPBasicAuth(username, password) if username else None
        self.deserializer = DataCiteDeserializer(date_resolver)

        logger.info(f"DataCite client initialized for {'TEST' if use_test_api else 'PRODUCTION'} API")

    @classmethod
    def from_config(cls, config) -> 'DataCiteClient':
        """Create a client from an EngineConfig."""
        return cls(
            username=config.datacite_username,
            password=config.datacite_password,
            use_test_api=config.use_test_api,
            date_resolver=DateResolver(config.timezone_fallback),
        )

    def get_doi_metadata(self, doi: str) -> Optional[Dict[str, Any]]:
        """
        Fetch complete metadata for a specific DOI.

        Args:
            doi: The DOI identifier (e.g., "10.5880/GFZ.1.1.2021.001")

        Returns:
            Complete metadata dictionary from DataCite API, or None if DOI not found

        Raises:
            AuthenticationError: If credentials are invalid
            NetworkError: If connection to API fails
            DataCiteAPIError: For other API errors
        """
        url = f"{self.base_url}/dois/{doi}"
        logger.info(f"Fetching metadata for DOI: {doi}")

        response = self._get(url)

        if response.status_code == 404:
            logger.warning(f"DOI not found: {doi}")
            return None

        self._raise_for_status(response, f"DOI {doi}")
        data = self._parse_json(response)
        logger.info(f"Successfully fetched metadata for DOI {doi}")
        return data

    def fetch_dois_page(
        self,
        prefix: Optional[str] = None,
        next_url: Optional[str] = None
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        Fetch a single page of DOI records using cursor-based pagination.

        Args:
            prefix: Restrict to a DOI prefix (e.g. "10.5880"); only used for the first page
            next_url: Full URL for next page (from previous response), or None for first page

        Returns:
            Tuple of (list of DOI records, next_url for pagination or None if no more pages)

        Raises:
            AuthenticationError: If credentials are invalid
            NetworkError: If connection to API fails
            DataCiteAPIError: For other API errors
        """
        if next_url:
            url = next_url
            params = None
            logger.debug(f"Requesting next page: {url}")
        else:
            # DataCite requires page[cursor]=1 for the first page
            url = f"{self.base_url}/dois"
            params = {
                "page[size]": self.PAGE_SIZE,
                "page[cursor]": 1,
            }
            if self.username:
                params["client-id"] = self.username
            if prefix:
                params["prefix"] = prefix
            logger.debug(f"Requesting first page: {url} with params: {params}")

        response = self._get(url, params)
        self._raise_for_status(response, "DOI list")
        data = self._parse_json(response)

        records = []
        for item in data.get("data") or []:
            if isinstance(item, dict) and item.get("id"):
                records.append(item)
            else:
                logger.warning(f"Skipping incomplete DOI entry: {item}")

        next_page_url = (data.get("links") or {}).get("next")
        if next_page_url:
            logger.debug(f"Next page URL: {next_page_url}")

        return records, next_page_url

    def iter_dois(self, prefix: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """
        Iterate over all DOI records, following the cursor links.

        Yields:
            DOI records ({"id": ..., "attributes": {...}})
        """
        next_url = None
        page_count = 0
        total = 0

        logger.info(f"Starting to fetch DOIs (prefix: {prefix or 'all'}, using cursor pagination)")

        while True:
            page_count += 1
            records, next_url = self.fetch_dois_page(prefix, next_url)
            total += len(records)
            logger.info(f"Fetched page {page_count}: {len(records)} DOIs (Total: {total})")

            yield from records

            if not next_url:
                break

        logger.info(f"Successfully fetched {total} DOIs in total")

    def import_doi(self, doi: str) -> Optional[ResourceGraph]:
        """
        Fetch a DOI and convert its metadata into a ResourceGraph.

        Returns:
            ResourceGraph, or None if the DOI does not exist

        Raises:
            DataCiteAPIError: For API errors or metadata that cannot be read
        """
        data = self.get_doi_metadata(doi)
        if data is None:
            return None
        return self.graph_from_record(data.get("data") if isinstance(data, dict) else None)

    def import_dois(self, prefix: Optional[str] = None) -> Iterator[ResourceGraph]:
        """Convert every DOI record of the listing into a ResourceGraph."""
        for record in self.iter_dois(prefix):
            yield self.graph_from_record(record)

    def graph_from_record(self, record: Optional[Dict[str, Any]]) -> ResourceGraph:
        """
        Convert one DOI record of the REST API into a ResourceGraph.

        Raises:
            DataCiteAPIError: If the record has no attributes
        """
        if not isinstance(record, dict):
            raise DataCiteAPIError("Invalid response from DataCite API (no 'data' object)")
        try:
            graph = self.deserializer.from_attributes(record.get("attributes"))
        except MalformedInputError as e:
            logger.error(f"Could not read metadata of {record.get('id')}: {e}")
            raise DataCiteAPIError(f"Invalid metadata for {record.get('id')}: {e}") from e
        if not graph.identifier:
            graph.identifier = record.get("id")
        return graph

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        try:
            return requests.get(
                url,
                auth=self.auth,
                params=params,
                timeout=self.TIMEOUT,
                headers=self.HEADERS,
            )
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout requesting {url}")
            raise NetworkError("The request to DataCite timed out. Please try again.") from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error: {e}")
            raise NetworkError("Connection to the DataCite API failed. Please check your internet connection.") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request exception: {e}")
            raise NetworkError(f"Network error while communicating with DataCite: {str(e)}") from e

    def _raise_for_status(self, response: requests.Response, subject: str):
        if response.status_code in (401, 403):
            logger.error(f"Authentication failed for user {self.username} while fetching {subject}")
            raise AuthenticationError("Authentication failed. Please check your username and password.")

        if response.status_code == 429:
            logger.error("Rate limit exceeded")
            raise DataCiteAPIError("Too many requests. Please wait a moment and try again.")

        if response.status_code != 200:
            logger.error(f"API error for {subject}: {response.status_code} - {response.text}")
            raise DataCiteAPIError(f"DataCite API error (HTTP {response.status_code}): {response.text}")

    @staticmethod
    def _parse_json(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Invalid JSON response: {e}")
            raise DataCiteAPIError("Invalid response from the DataCite API (not valid JSON).") from e
        if not isinstance(data, dict):
            raise DataCiteAPIError("Invalid response from the DataCite API (not a JSON object).")
        return data
