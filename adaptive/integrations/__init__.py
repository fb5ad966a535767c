"""
External integrations

This package contains:
- meta_client: Graph API insights reader and ad validation
"""

from .meta_client import AccountAuth, ClientConfig, MetaClient

__all__ = ['AccountAuth', 'ClientConfig', 'MetaClient']
