from app.core.content import build_content_template, render_content
from app.services.collaborators import Collaborators, LocalDocumentStore
from app.services.pdf_renderer import ReportLabPdfRenderer

# 1x1 transparent PNG
PIXEL = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="


def _template():
    return build_content_template(
        contract_token="MR3X-CTR-2025-00001-00002",
        clauses=["Cláusula de foro: São Paulo", "Reajuste anual pelo IGPM & multa de 2%"],
        header={"Locador": "Owner", "Locatário": "Tenant", "Aluguel mensal": "R$ 1500.00"},
        include_agency=False,
    )


def test_renders_a_pdf_document():
    snapshot = render_content(_template(), {"tenant": PIXEL, "owner": "data:image/png;base64,NOTANIMAGE"})

    pdf = ReportLabPdfRenderer().render(snapshot, {"contract_token": "MR3X-CTR-2025-00001-00002", "stage": "final"})

    assert pdf.startswith(b"%PDF")
    assert pdf.rstrip().endswith(b"%%EOF")


def test_same_content_renders_identical_bytes():
    renderer = ReportLabPdfRenderer()
    snapshot = render_content(_template(), {})
    data = {"contract_token": "MR3X-CTR-2025-00001-00002", "stage": "provisional"}

    assert renderer.render(snapshot, data) == renderer.render(snapshot, data)


def test_empty_template_still_renders():
    pdf = ReportLabPdfRenderer().render("", {"contract_token": "MR3X-CTR-2025-00001-00002", "stage": "final"})
    assert pdf.startswith(b"%PDF")


def test_default_collaborators_write_real_pdfs(tmp_path):
    collaborators = Collaborators(document_store=LocalDocumentStore(str(tmp_path)))
    assert isinstance(collaborators.pdf_renderer, ReportLabPdfRenderer)

    pdf = collaborators.pdf_renderer.render(render_content(_template(), {}), {"stage": "final"})
    path = collaborators.document_store.save(7, "final", pdf)

    assert path == str(tmp_path / "7" / "final.pdf")
    assert collaborators.document_store.load(path) == pdf
    assert pdf.startswith(b"%PDF")
