"""Database clients for GFZ data services."""

from datacite_engine.db.sumariopmd_client import SumarioPMDClient, DatabaseError

__all__ = ['SumarioPMDClient', 'DatabaseError']
