"""DataCite Engine - Bibliographic metadata normalization and export for DataCite/IGSN."""

from datacite_engine.__version__ import __version__, __description__  # noqa: F401
