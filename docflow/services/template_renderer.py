"""
TemplateRenderer: fills a document's form data into its printable artifact.

Markdown output (default), one file per document under ARTIFACT_FOLDER.
Rendering is best-effort: ``render_or_placeholder`` never raises; on
failure it logs and returns PLACEHOLDER_ARTIFACT so document creation
proceeds.

A different renderer (docx, pdf) can be installed per app:

    app.extensions["docflow.renderer"] = MyRenderer()

It must provide ``render(doc_type, form, document_id) -> str`` and raise
``TemplateRenderError`` on failure.
"""

import logging
import os
from dataclasses import fields

from flask import current_app

from docflow.core.exceptions import TemplateRenderError
from docflow.core.forms import to_payload

logger = logging.getLogger(__name__)

_TITLES = {
    "proposal": "Project Proposal",
    "saf": "Student Allocated Funds Request",
    "facility": "Facility Request",
    "communication": "Communication Letter",
}

RENDERER_EXTENSION_KEY = "docflow.renderer"


class MarkdownTemplateRenderer:
    """Writes ``<ARTIFACT_FOLDER>/<doc_type>_<id>.md``."""

    def render(self, doc_type: str, form, document_id: int) -> str:
        folder = current_app.config["ARTIFACT_FOLDER"]
        filename = f"{doc_type}_{document_id}.md"
        try:
            os.makedirs(folder, exist_ok=True)
            with open(os.path.join(folder, filename), "w", encoding="utf-8") as fh:
                fh.write(self.to_markdown(doc_type, form, document_id))
        except OSError as exc:
            raise TemplateRenderError(f"Could not write artifact {filename}: {exc}") from exc
        return f"artifacts/{filename}"

    @staticmethod
    def to_markdown(doc_type: str, form, document_id: int) -> str:
        payload = to_payload(form)
        lines = [f"# {_TITLES.get(doc_type, 'Document')} #{document_id}", ""]
        for f in fields(form):
            value = payload.get(f.name)
            label = f.name.replace("_", " ").title()
            if isinstance(value, list):
                lines.append(f"**{label}:**")
                for item in value:
                    if isinstance(item, dict):
                        item = f"{item.get('kind')} #{item.get('id')}"
                    lines.append(f"- {item}")
                if not value:
                    lines.append("- (none)")
            else:
                lines.append(f"**{label}:** {value if value not in (None, '') else '-'}")
            lines.append("")
        return "\n".join(lines)


def get_renderer():
    return current_app.extensions.get(RENDERER_EXTENSION_KEY) or MarkdownTemplateRenderer()


def render_or_placeholder(doc_type: str, form, document_id: int) -> str:
    """Render the artifact, falling back to the placeholder reference."""
    try:
        return get_renderer().render(doc_type, form, document_id)
    except TemplateRenderError as exc:
        logger.warning(
            "Template rendering failed, using placeholder: %s", exc,
            extra={"document_id": document_id, "event_type": "render_failed"},
        )
        return current_app.config["PLACEHOLDER_ARTIFACT"]
