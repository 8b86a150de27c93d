# kegdex: keg knowledge-base engine and MCP server
#
# Modular package structure:
# - config.py: Settings, keg layout names and constants
# - logging.py: structlog configuration
# - utils.py: Error kinds, regex patterns, YAML and file helpers
# - models.py: Pydantic models (NodeId, NodeStats, NodeMeta, KegConfig, ...)
# - content.py: Node body parser (title, lead, links, digest)
# - tag_expr.py: Boolean tag expression parser and evaluator
# - repository.py: Storage interface and optional attachment capabilities
# - repo_filesystem.py: Directory backed repository
# - repo_memory.py: In-memory repository
# - dex.py: Dex artifacts, index runs and the read API
# - keg.py: Node lifecycle (create, set content/meta, move, remove, index)
# - editor.py: External editor watch and save loop
# - writer.py: Edit file format and create/edit flows
# - cache.py: KegCache class for in-memory caching
# - search.py: Listing, search and statistics
# - tools.py: MCP tool handlers and server factory
# - main.py: Entry point and server initialization
