"""Utility modules for DatoCMS schema synchronization."""

from .dato_client import DatoClient, api_error_from_body, parse_api_error

__all__ = ['DatoClient', 'api_error_from_body', 'parse_api_error']
