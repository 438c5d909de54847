from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


def render_template_string(template: str, variables: Dict[str, Any]) -> str:
    """Very small Jinja-like template renderer with {{var}} replacement.

    Supports dotted and indexed paths such as {{fields.title}} or
    {{citations[0].url}}, and a ``default`` filter for empty values:
    {{budget | default:To be confirmed}}. Expressions that cannot be resolved
    are left as-is.
    """
    def _resolve_expr(expr: str) -> Any:
        expr = expr.strip()
        m = re.match(r"^([a-zA-Z_][\w\.]*(?:\[[^\]]+\])*)(?:\s*\|\s*default\s*:\s*(.*))?$", expr)
        if m:
            base, fallback = m.group(1), m.group(2)
            val = resolve_path(base, variables)
            if fallback is not None and (val is None or (isinstance(val, str) and not val.strip())):
                return fallback.strip()
            return val
        return resolve_path(expr, variables)

    def repl(match: re.Match[str]) -> str:
        expr = match.group(1)
        val = _resolve_expr(expr)
        if isinstance(val, (str, int, float)):
            return str(val)
        if isinstance(val, (list, tuple)) and all(isinstance(v, str) for v in val):
            return "\n".join(f"- {v}" for v in val)
        # Unresolvable or structured values keep the original token
        return match.group(0)

    return re.sub(r"\{\{([^}]+)\}\}", repl, template)


def resolve_path(path: str, variables: Dict[str, Any]) -> Any:
    """Resolve a dotted/indexed path like foo[0].bar against variables."""
    tokens = _tokenize_path(path)
    cur: Any = variables
    for tok in tokens:
        if tok == "":
            continue
        if isinstance(cur, dict) and tok in cur:
            cur = cur[tok]
            continue
        # index access
        m = re.match(r"^(\w+)\[(\d+)\]$", tok)
        if m:
            name, idx_s = m.group(1), m.group(2)
            cur = cur.get(name) if isinstance(cur, dict) else getattr(cur, name, None)
            idx = int(idx_s)
            if isinstance(cur, (list, tuple)) and 0 <= idx < len(cur):
                cur = cur[idx]
            else:
                return None
            continue
        # attribute access
        if hasattr(cur, tok):
            cur = getattr(cur, tok)
        elif isinstance(cur, dict):
            cur = cur.get(tok)
        else:
            return None
    return cur


def _tokenize_path(path: str) -> List[str]:
    # Split on dots that are not within brackets
    out: List[str] = []
    buf: List[str] = []
    depth = 0
    for ch in path:
        if ch == '.' and depth == 0:
            out.append(''.join(buf))
            buf = []
        else:
            if ch == '[':
                depth += 1
            elif ch == ']':
                depth = max(0, depth - 1)
            buf.append(ch)
    if buf:
        out.append(''.join(buf))
    return out
