"""Document ingestion collaborators: byte stores and text parsers."""
