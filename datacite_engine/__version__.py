"""Version information for the DataCite engine."""

__version__ = "0.1.0"
__version_info__ = (0, 1, 0)

# Release information
__organization__ = "GFZ Data Services, GFZ Helmholtz Centre for Geosciences"
__license__ = "GNU General Public License v3.0"
__description__ = "Bibliographic metadata normalization and DataCite export engine"
