"""Persistence helpers: atomic JSON documents and native-format codecs."""

from ai_bridge.storage.codecs import DocumentCodec, JsonCodec, NativeDocument, TomlCodec
from ai_bridge.storage.json_store import JsonDocumentStore, atomic_write_text
from ai_bridge.storage.toml_codec import TomlCodecError, generate_toml, parse_toml

__all__ = [
    "DocumentCodec",
    "JsonCodec",
    "TomlCodec",
    "NativeDocument",
    "JsonDocumentStore",
    "atomic_write_text",
    "TomlCodecError",
    "generate_toml",
    "parse_toml",
]
