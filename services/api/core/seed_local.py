"""
Seed script for local testing of the drawing split service.
Creates a project and one existing drawing so revision matching has
something to find.

Usage:
    python -m core.seed_local
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from settings import get_settings
from adapters.sqlite import SqliteAdapter
from core.blob_store import LocalBlobStore

SEED_PROJECT_ID = "proj-demo"
SEED_DRAWING_NUMBER = "A1.01"

# Smallest valid one-page PDF (stand-in for an earlier upload)
PLACEHOLDER_PDF = (
    b"%PDF-1.4\n1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj\n"
    b"2 0 obj<</Type/Pages/Kids[3 0 R]/Count 1>>endobj\n"
    b"3 0 obj<</Type/Page/Parent 2 0 R/MediaBox[0 0 612 792]>>endobj\n"
    b"trailer<</Root 1 0 R>>\n%%EOF\n"
)


def seed(adapter=None, blobs=None):
    """Create sample data for testing. Safe to run twice."""
    print("🌱 Seeding Drawing Split...")

    settings = get_settings()
    if adapter is None:
        if settings.storage_backend != "sqlite":
            print(f"❌ Seeding not implemented for {settings.storage_backend}")
            return None
        adapter = SqliteAdapter.from_url(settings.db_url)
    blobs = blobs or LocalBlobStore(settings.blob_root_dir)

    project = adapter.get_project(SEED_PROJECT_ID)
    if project is None:
        print("🏗️  Creating project...")
        project = adapter.create_project(
            "Harbor View Tower",
            address="100 Main Street, Springfield",
            project_id=SEED_PROJECT_ID,
        )
    print(f"✅ Project: {project.id} ({project.name})")

    existing = adapter.list_latest_drawings(project.id, [SEED_DRAWING_NUMBER])
    if existing:
        print(f"✅ Drawing {SEED_DRAWING_NUMBER} already present: {existing[0].file_id}")
        return project

    print(f"📄 Creating drawing {SEED_DRAWING_NUMBER}...")
    path = f"{project.id}/drawings/architectural/seed-{SEED_DRAWING_NUMBER}.pdf"
    if not blobs.exists(path):
        blobs.upload(path, PLACEHOLDER_PDF, "application/pdf")

    doc = adapter.create_document_with_revision(
        {
            "project_id": project.id,
            "name": f"{SEED_DRAWING_NUMBER} - FIRST FLOOR PLAN.pdf",
            "storage_path": path,
            "uploaded_by": "seed_script",
            "category": "DRAWINGS",
            "tags": ["architectural"],
            "page_count": 1,
        },
        {
            "drawing_number": SEED_DRAWING_NUMBER,
            "sheet_title": "FIRST FLOOR PLAN",
            "discipline": "ARCHITECTURAL",
            "revision": "A",
        },
        {"change_notes": "Seeded", "uploaded_by": "seed_script", "file_size": len(PLACEHOLDER_PDF)},
    )
    print(f"✅ Drawing created: {doc.id}")

    print("\n" + "="*60)
    print("🎉 Seeding complete!")
    print("="*60)
    print(f"\n📋 Project ID: {project.id}")
    print(f"📋 Drawing file ID: {doc.id}")
    print(f"\n🔗 Try: POST /documents/split/start with projectId={project.id}")
    print()
    return project


if __name__ == "__main__":
    seed()
