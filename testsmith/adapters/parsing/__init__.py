from .typescript import (
    exported_names,
    get_ts_parser,
    grammar_for_path,
    iter_nodes,
    node_text,
    parse_source,
    syntax_errors,
    top_level_bindings,
    unwrap_export,
)

__all__ = [
    "exported_names",
    "get_ts_parser",
    "grammar_for_path",
    "iter_nodes",
    "node_text",
    "parse_source",
    "syntax_errors",
    "top_level_bindings",
    "unwrap_export",
]
