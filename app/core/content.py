#app/core/content.py
from __future__ import annotations

import html
from string import Template
from typing import Any, Dict, Iterable, Mapping, Optional

SIGNATURE_ROLES = ("tenant", "owner", "agency", "witness")

SIGNATURE_LABELS = {
    "tenant": "LOCATÁRIO(A)",
    "owner": "LOCADOR(A)",
    "agency": "IMOBILIÁRIA",
    "witness": "TESTEMUNHA",
}

EMPTY_SIGNATURE_LINE = "_______________________________"


def slot_name(role: str) -> str:
    return f"signature_{role}"


def _signature_img(role: str, signature: str) -> str:
    return (
        f'<img src="{html.escape(signature, quote=True)}" '
        f'alt="Assinatura {SIGNATURE_LABELS[role]}" class="signature-image" />'
    )


def _clauses_to_html(clauses: Any) -> str:
    if clauses is None:
        return ""
    if isinstance(clauses, str):
        return f"<div class=\"clauses\">{html.escape(clauses)}</div>"
    if isinstance(clauses, Mapping):
        if "content" in clauses and len(clauses) == 1:
            return _clauses_to_html(clauses["content"])
        items = [f"<li><strong>{html.escape(str(k))}</strong>: {html.escape(str(v))}</li>" for k, v in clauses.items()]
        return "<ol class=\"clauses\">" + "".join(items) + "</ol>"
    if isinstance(clauses, Iterable):
        items = [f"<li>{html.escape(str(c))}</li>" for c in clauses]
        return "<ol class=\"clauses\">" + "".join(items) + "</ol>"
    return f"<div class=\"clauses\">{html.escape(str(clauses))}</div>"


def build_content_template(
    *,
    contract_token: str,
    clauses: Any,
    header: Dict[str, Any],
    include_agency: bool,
) -> str:
    """
    Document body with one named slot per signing role.
    Slots are filled by render_content; the template itself never changes after signing starts.
    """
    lines = [
        "<h1>CONTRATO DE LOCAÇÃO RESIDENCIAL</h1>",
        f"<p class=\"token\">{html.escape(contract_token)}</p>",
    ]
    for key in sorted(header):
        value = header[key]
        if value is None:
            continue
        lines.append(f"<p><strong>{html.escape(key)}</strong>: {html.escape(str(value))}</p>")

    # '$' must be escaped for Template before the slots are appended
    body = "\n".join(lines) + "\n" + _clauses_to_html(clauses)
    body = body.replace("$", "$$")

    roles = ["owner", "tenant"] + (["agency"] if include_agency else []) + ["witness"]
    for role in roles:
        body += (
            f"\n<div class=\"signature-section\" data-role=\"{role}\">"
            f"${{{slot_name(role)}}}"
            f"<div class=\"signature-name\">{SIGNATURE_LABELS[role]}</div></div>"
        )
    return body


def render_content(template: Optional[str], signatures: Mapping[str, Optional[str]]) -> Optional[str]:
    """
    Substitute collected signature images into their slots.
    Always renders from the template, so re-running never duplicates images.
    """
    if template is None:
        return None
    values = {}
    for role in SIGNATURE_ROLES:
        sig = signatures.get(role)
        values[slot_name(role)] = _signature_img(role, sig) if sig else EMPTY_SIGNATURE_LINE
    return Template(template).safe_substitute(values)
