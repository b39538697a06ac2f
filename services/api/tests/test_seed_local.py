"""
Tests for the local seed script.
"""
from core.seed_local import SEED_DRAWING_NUMBER, SEED_PROJECT_ID, seed


def test_seed_is_repeatable(storage, blobs):
    project = seed(storage, blobs)
    assert project.id == SEED_PROJECT_ID

    seed(storage, blobs)

    drawings = storage.list_latest_drawings(SEED_PROJECT_ID, [SEED_DRAWING_NUMBER])
    assert len(drawings) == 1
    assert drawings[0].revision == "A"
    assert blobs.exists(storage.get_file(drawings[0].file_id).storage_path)
