import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fieldmedia.db import crud
from fieldmedia.errors import AnnotationValidationError, NotFound
from fieldmedia.models import Base
from fieldmedia.services import annotation_service
from fieldmedia.services.collaborators import Identity


@pytest_asyncio.fixture
async def db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def actor():
    return Identity(user_id="user-1", business_id="biz-1", display_name="Dana Field")


def document(*objects):
    return {"version": 1, "canvas": {"width": 800, "height": 600}, "objects": list(objects)}


ARROW = {"id": "a1", "type": "arrow", "x": 10, "y": 10, "points": [0, 0, 50, 50], "color": "#ff0000"}
NOTE = {"id": "t1", "type": "text", "x": 100, "y": 100, "text": "Water damage", "color": "#000"}


async def test_first_save_creates_current_version(db, actor):
    row = await annotation_service.save_annotation(db, "media-1", document(ARROW), actor)

    assert row.version == 1
    assert row.is_current
    assert row.parent_version_id is None
    assert row.created_by == "user-1"
    assert row.created_by_name == "Dana Field"
    assert row.business_id == "biz-1"
    assert row.has_arrows and not row.has_text
    assert row.object_count == 1

    jobs = await crud.list_render_jobs(db, row.id)
    assert [j.status for j in jobs] == ["pending"]


async def test_second_save_links_to_parent(db, actor):
    v1 = await annotation_service.save_annotation(db, "media-1", document(ARROW), actor)
    v2 = await annotation_service.save_annotation(db, "media-1", document(ARROW, NOTE), actor)

    assert v2.version == 2
    assert v2.parent_version_id == v1.id
    assert (await crud.get_annotation(db, v1.id)).is_current is False
    assert (await annotation_service.get_current_annotation(db, "media-1")).id == v2.id

    history = await annotation_service.list_annotation_history(db, "media-1")
    assert [h.version for h in history] == [2, 1]


async def test_versions_are_per_photo(db, actor):
    await annotation_service.save_annotation(db, "media-1", document(ARROW), actor)
    other = await annotation_service.save_annotation(db, "media-2", document(NOTE), actor)
    assert other.version == 1


async def test_invalid_document_is_rejected(db, actor):
    bad = document({**ARROW, "color": "notacolor"})
    with pytest.raises(AnnotationValidationError) as exc_info:
        await annotation_service.save_annotation(db, "media-1", bad, actor)

    assert exc_info.value.errors == ["Object a1 has invalid color: notacolor"]
    assert await annotation_service.get_current_annotation(db, "media-1") is None


async def test_warnings_are_fixed_before_storing(db, actor):
    row = await annotation_service.save_annotation(db, "media-1", document({**ARROW, "strokeWidth": 999}), actor)
    stored = row.annotation_data["objects"][0]
    assert stored["strokeWidth"] == 50
    assert stored["color"] == "#FF0000"


async def test_revert_saves_old_document_as_new_version(db, actor):
    v1 = await annotation_service.save_annotation(db, "media-1", document(ARROW), actor)
    v2 = await annotation_service.save_annotation(db, "media-1", document(NOTE), actor)

    v3 = await annotation_service.revert_annotation(db, "media-1", v1.id, actor)
    assert v3.version == 3
    assert v3.parent_version_id == v2.id
    assert v3.annotation_data == v1.annotation_data
    assert v3.is_current


async def test_revert_rejects_version_of_other_photo(db, actor):
    other = await annotation_service.save_annotation(db, "media-2", document(ARROW), actor)
    with pytest.raises(NotFound):
        await annotation_service.revert_annotation(db, "media-1", other.id, actor)


async def test_delete_is_soft(db, actor):
    v1 = await annotation_service.save_annotation(db, "media-1", document(ARROW), actor)
    deleted = await annotation_service.delete_annotation(db, "media-1", actor)

    assert deleted.deleted_at is not None
    assert deleted.deleted_by == "user-1"
    assert await annotation_service.get_current_annotation(db, "media-1") is None
    assert await annotation_service.list_annotation_history(db, "media-1") == []
    assert await crud.get_annotation(db, v1.id) is not None

    with pytest.raises(NotFound):
        await annotation_service.revert_annotation(db, "media-1", v1.id, actor)

    again = await annotation_service.save_annotation(db, "media-1", document(NOTE), actor)
    assert again.version == 2


async def test_delete_without_annotation(db, actor):
    with pytest.raises(NotFound):
        await annotation_service.delete_annotation(db, "media-1", actor)


def test_summarize_flags():
    data = annotation_service.load_document(
        type("Row", (), {"annotation_data": document(
            NOTE,
            {"id": "e", "type": "ellipse"},
            {"id": "m", "type": "measurement", "points": [0, 0, 1, 1]},
        )})()
    )
    summary = annotation_service.summarize(data)
    assert summary == {
        "object_count": 3,
        "has_text": True,
        "has_arrows": False,
        "has_shapes": True,
        "has_measurements": True,
    }
