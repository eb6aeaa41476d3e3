"""Service layer: wikilink parsing, link resolution, graph queries and search."""
