"""Main entry point for the DataCite metadata engine."""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from datacite_engine.api.datacite_client import DataCiteAPIError, DataCiteClient
from datacite_engine.api.datacite_deserializer import MalformedInputError, deserialize
from datacite_engine.api.datacite_serializer import DataCiteSerializer, SerializationResult
from datacite_engine.config import EngineConfig, load_config
from datacite_engine.db import DatabaseError, SumarioPMDClient
from datacite_engine.models import ResourceGraph
from datacite_engine.utils.csv_parser import CSVParseError, IgsnCsvParser
from datacite_engine.utils.date_resolver import DateResolver
from datacite_engine.utils.graph_builder import ResourceGraphBuilder, build_upload_response


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = "datacite_engine.log"):
    """Configure logging for the application."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def write_exports(
    graph: ResourceGraph,
    serializer: DataCiteSerializer,
    formats: List[str],
    output_dir: str
) -> bool:
    """
    Serialize a graph and write one file per format.

    Validation errors are printed as error document instead of a file.

    Returns:
        True if every format was exported
    """
    os.makedirs(output_dir, exist_ok=True)
    ok = True
    for format in formats:
        result = serializer.serialize(graph, format)
        if not result.ok:
            print(json.dumps(result.to_error_document(), indent=2, ensure_ascii=False))
            ok = False
            continue
        path = os.path.join(output_dir, result.filename)
        _write_result(result, path)
        print(f"Wrote {path}")
    return ok


def _write_result(result: SerializationResult, path: str):
    with open(path, 'w', encoding='utf-8') as f:
        if result.format == "json":
            json.dump(result.document, f, indent=2, ensure_ascii=False)
            f.write('\n')
        else:
            f.write(result.document)
    logger.info(f"Export written to {path}")


def _formats(value: str) -> List[str]:
    return ["json", "xml"] if value == "both" else [value]


def run_csv(args, config: EngineConfig) -> int:
    """Ingest an IGSN CSV file and export every created sample."""
    try:
        parsed = IgsnCsvParser.parse_file(args.file)
    except (FileNotFoundError, CSVParseError) as e:
        logger.error(f"Could not read {args.file}: {e}")
        print(json.dumps({
            'success': False,
            'message': str(e),
            'filename': os.path.basename(args.file),
            'errors': [],
        }, indent=2, ensure_ascii=False))
        return 1

    existing = set()
    if args.check_database:
        client = SumarioPMDClient.from_config(config)
        existing = client.fetch_existing_identifiers(row.get('igsn') for row in parsed.rows)

    builder = ResourceGraphBuilder(DateResolver(config.timezone_fallback), config.default_publisher)
    result = builder.build(parsed, existing_identifiers=existing)
    status, response = build_upload_response(result, os.path.basename(args.file))
    print(json.dumps(response, indent=2, ensure_ascii=False))

    if status != 200:
        return 1

    serializer = DataCiteSerializer.from_config(config)
    exported = [write_exports(graph, serializer, _formats(args.format), args.output_dir) for graph in result.graphs]
    return 0 if all(exported) else 1


def run_convert(args, config: EngineConfig) -> int:
    """Convert a DataCite JSON or XML document."""
    try:
        with open(args.file, 'rb') as f:
            content = f.read()
    except OSError as e:
        logger.error(f"Could not read {args.file}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        graph = deserialize(content, DateResolver(config.timezone_fallback))
    except MalformedInputError as e:
        logger.error(f"Could not read {args.file}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    serializer = DataCiteSerializer.from_config(config)
    return 0 if write_exports(graph, serializer, _formats(args.format), args.output_dir) else 1


def run_doi(args, config: EngineConfig) -> int:
    """Export a DOI read from the DataCite REST API or the legacy database."""
    if args.source == "database":
        client = SumarioPMDClient.from_config(config)
        resource_id = client.get_resource_id_for_doi(args.doi)
        graph = None
        if resource_id is not None:
            graph = client.load_resource_graph(resource_id, DateResolver(config.timezone_fallback))
    else:
        graph = DataCiteClient.from_config(config).import_doi(args.doi)

    if graph is None:
        print(f"Error: DOI {args.doi} not found", file=sys.stderr)
        return 1

    serializer = DataCiteSerializer.from_config(config)
    return 0 if write_exports(graph, serializer, _formats(args.format), args.output_dir) else 1


def run_prefix(args, config: EngineConfig) -> int:
    """Export every DOI of a prefix listed by the DataCite REST API."""
    serializer = DataCiteSerializer.from_config(config)
    exported = [
        write_exports(graph, serializer, _formats(args.format), args.output_dir)
        for graph in DataCiteClient.from_config(config).import_dois(args.prefix)
    ]
    logger.info(f"Exported {exported.count(True)} of {len(exported)} DOIs for prefix {args.prefix}")

    if not exported:
        print(f"No DOIs found for prefix {args.prefix}")
    return 0 if all(exported) else 1


def build_parser() -> argparse.ArgumentParser:
    """Create the command line parser."""
    parser = argparse.ArgumentParser(
        prog="datacite-engine",
        description="Normalize bibliographic metadata and export DataCite 4.6 JSON/XML"
    )
    parser.add_argument('--env-file', help="Path to a .env file")
    parser.add_argument('--log-level', help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest='command', required=True)

    def add_output_options(subparser):
        subparser.add_argument('--format', choices=["json", "xml", "both"], default="both")
        subparser.add_argument('--output-dir', default=".", help="Directory for export files")

    csv_parser = subparsers.add_parser('csv', help="Ingest an IGSN CSV file")
    csv_parser.add_argument('file')
    csv_parser.add_argument(
        '--check-database', action='store_true',
        help="Reject IGSNs already stored in the SUMARIOPMD database"
    )
    add_output_options(csv_parser)

    convert_parser = subparsers.add_parser('convert', help="Convert a DataCite JSON/XML document")
    convert_parser.add_argument('file')
    add_output_options(convert_parser)

    doi_parser = subparsers.add_parser('doi', help="Export an existing DOI")
    doi_parser.add_argument('doi')
    doi_parser.add_argument('--source', choices=["datacite", "database"], default="datacite")
    add_output_options(doi_parser)

    prefix_parser = subparsers.add_parser('prefix', help="Export all DOIs of a prefix from DataCite")
    prefix_parser.add_argument('prefix')
    add_output_options(prefix_parser)

    return parser


COMMANDS = {
    'csv': run_csv,
    'convert': run_convert,
    'doi': run_doi,
    'prefix': run_prefix,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.env_file)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(args.log_level or config.log_level, config.log_file)
    logger.info(f"Starting datacite-engine ({args.command})")

    try:
        return COMMANDS[args.command](args, config)
    except (DataCiteAPIError, DatabaseError) as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
