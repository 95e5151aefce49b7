"""
Config rendering: document models and the renderer.
"""
from .documents import CoordinationDocument, DataStoreDocument, to_xml
from .renderer import ConfigRenderer, RenderedConfig, json_schema

__all__ = [
    'CoordinationDocument',
    'DataStoreDocument',
    'to_xml',
    'ConfigRenderer',
    'RenderedConfig',
    'json_schema',
]
