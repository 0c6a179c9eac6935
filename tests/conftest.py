"""
Shared fixtures: real multi-page PDFs and throwaway job databases.
"""

import io

import pytest
from reportlab.pdfgen import canvas as rl_canvas

from statement_extractor.jobs.manager import JobManager
from statement_extractor.jobs.store import SQLiteJobStore


def build_pdf(pages: int) -> bytes:
    """Return an in-memory PDF with *pages* pages, each labelled with its number."""
    buf = io.BytesIO()
    c = rl_canvas.Canvas(buf)
    for n in range(1, pages + 1):
        c.drawString(100, 750, f"Statement page {n}")
        c.drawString(100, 730, f"01/04/2025  UPI/SHOP{n}  {n * 10}.00 Dr")
        c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def tmp_db(tmp_path):
    return str(tmp_path / "jobs.db")


@pytest.fixture
def job_manager(tmp_db):
    return JobManager(SQLiteJobStore(tmp_db))
