"""
Binary template persistence
"""

from .template_store import TemplateStore, encode_template, decode_template

__all__ = ['TemplateStore', 'encode_template', 'decode_template']
