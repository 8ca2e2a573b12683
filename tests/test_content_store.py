import pytest
from bson import ObjectId

from conftest import ADMIN_ID, LEARNER_ID, course_attrs
from easylms.api.auth_guard import SessionUser
from easylms.courses import content_store, enrollment_store, progress_store
from easylms.courses.errors import ConflictError, NotFoundError, ValidationError


async def _positions(db, collection, parent_field, parent_id):
    docs = await db[collection].find({parent_field: ObjectId(parent_id)}).sort("position", 1).to_list(None)
    return [d["position"] for d in docs]


# ==================== Courses ====================

class TestCreateCourse:
    async def test_slug_derived_from_title(self, db):
        course = await content_store.create_course(db, course_attrs(), ADMIN_ID)

        assert course["slug"] == "intro-to-python"
        assert course["price"] == 49.99
        assert course["duration"] == 2.5
        assert course["level"] == "Beginner"
        assert course["created_by"] == ADMIN_ID
        assert course["chapters"] == []

    async def test_defaults_to_draft(self, db):
        attrs = course_attrs()
        attrs.pop("status")
        course = await content_store.create_course(db, attrs, ADMIN_ID)
        assert course["status"] == "Draft"

    async def test_explicit_slug_is_normalized(self, db):
        course = await content_store.create_course(db, course_attrs(slug="My Custom Slug!"), ADMIN_ID)
        assert course["slug"] == "my-custom-slug"

    async def test_slug_collision_gets_suffix(self, db):
        first = await content_store.create_course(db, course_attrs(), ADMIN_ID)
        second = await content_store.create_course(db, course_attrs(), ADMIN_ID)

        assert first["slug"] == "intro-to-python"
        assert second["slug"].startswith("intro-to-python-")
        assert second["slug"] != first["slug"]

    async def test_missing_fields_rejected(self, db):
        with pytest.raises(ValidationError) as exc:
            await content_store.create_course(db, course_attrs(file_key=""), ADMIN_ID)
        assert exc.value.error == ["file_key is required"]

    async def test_negative_price_rejected(self, db):
        with pytest.raises(ValidationError) as exc:
            await content_store.create_course(db, course_attrs(price=-1), ADMIN_ID)
        assert "Price cannot be negative" in exc.value.error

    async def test_duplicate_slug_on_insert_is_conflict(self, db, monkeypatch):
        await content_store.create_course(db, course_attrs(), ADMIN_ID)

        async def no_suffix(db, text, exclude_id=None):
            return content_store.make_slug(text)

        monkeypatch.setattr(content_store, "unique_slug", no_suffix)
        with pytest.raises(ConflictError):
            await content_store.create_course(db, course_attrs(), ADMIN_ID)


class TestReadCourse:
    async def test_get_by_id_nests_content_in_order(self, db, seed_course):
        seeded = await seed_course(chapters=2, lessons=3)

        course = await content_store.get_course_by_id(db, seeded["_id"])

        assert [c["title"] for c in course["chapters"]] == ["Chapter 1", "Chapter 2"]
        assert [l["position"] for l in course["chapters"][0]["lessons"]] == [1, 2, 3]
        assert course["chapters"][1]["lessons"][0]["title"] == "Lesson 2.1"

    async def test_get_by_id_unknown(self, db):
        with pytest.raises(NotFoundError):
            await content_store.get_course_by_id(db, str(ObjectId()))

    async def test_get_by_id_invalid(self, db):
        with pytest.raises(ValidationError):
            await content_store.get_course_by_id(db, "not-an-id")

    async def test_slug_anonymous_sees_preview_only(self, db, seed_course):
        seeded = await seed_course(chapters=1, lessons=1)

        course = await content_store.get_course_by_slug(db, seeded["slug"], None)

        lesson = course["chapters"][0]["lessons"][0]
        assert course["is_enrolled"] is False
        assert "video_key" not in lesson
        assert "thumbnail_key" not in lesson
        assert lesson["title"] == "Lesson 1.1"

    async def test_slug_draft_hidden_from_public(self, db, seed_course):
        seeded = await seed_course(chapters=0, status="Draft")

        with pytest.raises(NotFoundError):
            await content_store.get_course_by_slug(db, seeded["slug"], SessionUser(LEARNER_ID))

    async def test_slug_admin_sees_draft_in_full(self, db, seed_course):
        seeded = await seed_course(chapters=1, lessons=1, status="Draft")

        course = await content_store.get_course_by_slug(db, seeded["slug"], SessionUser(ADMIN_ID, "admin"))

        assert course["chapters"][0]["lessons"][0]["video_key"] == "video-1-1.mp4"

    async def test_slug_enrolled_learner_sees_media(self, db, seed_course):
        seeded = await seed_course(chapters=1, lessons=1)
        await enrollment_store.enroll(db, LEARNER_ID, seeded["_id"])

        course = await content_store.get_course_by_slug(db, seeded["slug"], SessionUser(LEARNER_ID))

        assert course["is_enrolled"] is True
        assert course["chapters"][0]["lessons"][0]["video_key"] == "video-1-1.mp4"

    async def test_list_filters_and_search(self, db):
        await content_store.create_course(db, course_attrs(title="Python Basics"), ADMIN_ID)
        await content_store.create_course(db, course_attrs(title="Advanced Rust", level="Advanced"), ADMIN_ID)
        await content_store.create_course(db, course_attrs(title="Draft Course", status="Draft"), ADMIN_ID)

        advanced = await content_store.list_courses(db, {"level": "Advanced"})
        assert [c["title"] for c in advanced["data"]] == ["Advanced Rust"]

        drafts = await content_store.list_courses(db, {"status": "Draft"})
        assert drafts["pagination"]["total"] == 1

        search = await content_store.list_courses(db, {"search": "RUST"})
        assert [c["title"] for c in search["data"]] == ["Advanced Rust"]

    async def test_list_search_escapes_regex(self, db):
        await content_store.create_course(db, course_attrs(title="C++ in Depth"), ADMIN_ID)
        await content_store.create_course(db, course_attrs(title="Cooking"), ADMIN_ID)

        result = await content_store.list_courses(db, {"search": "C++"})
        assert [c["title"] for c in result["data"]] == ["C++ in Depth"]

    async def test_list_pagination(self, db):
        for i in range(3):
            await content_store.create_course(db, course_attrs(title=f"Course {i}"), ADMIN_ID)

        page = await content_store.list_courses(db, {}, page=2, limit=2)

        assert len(page["data"]) == 1
        assert page["pagination"] == {
            "page": 2, "limit": 2, "total": 3, "pages": 2, "has_next": False, "has_prev": True,
        }


class TestUpdateCourse:
    async def test_partial_update_keeps_other_fields(self, db, seed_course):
        seeded = await seed_course(chapters=0)

        updated = await content_store.update_course(db, seeded["_id"], {"price": 19.0, "title": None})

        assert updated["price"] == 19.0
        assert updated["title"] == "Intro to Python"

    async def test_negative_duration_rejected(self, db, seed_course):
        seeded = await seed_course(chapters=0)
        with pytest.raises(ValidationError):
            await content_store.update_course(db, seeded["_id"], {"duration": -3})

    async def test_slug_change_avoids_other_courses(self, db):
        await content_store.create_course(db, course_attrs(title="Taken"), ADMIN_ID)
        other = await content_store.create_course(db, course_attrs(title="Other"), ADMIN_ID)

        updated = await content_store.update_course(db, other["_id"], {"slug": "Taken"})
        assert updated["slug"].startswith("taken-")

        same = await content_store.update_course(db, other["_id"], {"slug": updated["slug"]})
        assert same["slug"] == updated["slug"]

    async def test_unknown_course(self, db):
        with pytest.raises(NotFoundError):
            await content_store.update_course(db, str(ObjectId()), {"title": "x"})


# ==================== Chapters ====================

class TestChapters:
    async def test_positions_follow_creation_order(self, db, seed_course):
        seeded = await seed_course(chapters=3, lessons=0)

        assert [c["position"] for c in seeded["chapters"]] == [1, 2, 3]
        course = await db.courses.find_one({"_id": ObjectId(seeded["_id"])})
        assert [str(c) for c in course["chapters"]] == [c["_id"] for c in seeded["chapters"]]

    async def test_create_for_missing_course(self, db):
        with pytest.raises(NotFoundError):
            await content_store.create_chapter(db, str(ObjectId()), "Orphan")
        assert await db.chapters.count_documents({}) == 0

    async def test_delete_first_renumbers(self, db, seed_course, storage):
        seeded = await seed_course(chapters=2, lessons=0)

        await content_store.delete_chapter(db, storage, seeded["chapters"][0]["_id"])

        assert await _positions(db, "chapters", "course_id", seeded["_id"]) == [1]

    async def test_positions_contiguous_after_mixed_operations(self, db, seed_course, storage):
        seeded = await seed_course(chapters=4, lessons=0)
        await content_store.delete_chapter(db, storage, seeded["chapters"][1]["_id"])
        await content_store.create_chapter(db, seeded["_id"], "Late addition")
        await content_store.delete_chapter(db, storage, seeded["chapters"][3]["_id"])

        assert await _positions(db, "chapters", "course_id", seeded["_id"]) == [1, 2, 3]
        course = await db.courses.find_one({"_id": ObjectId(seeded["_id"])})
        assert len(course["chapters"]) == 3

    async def test_delete_removes_lessons_progress_and_media(self, db, seed_course, storage, s3):
        seeded = await seed_course(chapters=1, lessons=2)
        chapter = seeded["chapters"][0]
        await enrollment_store.enroll(db, LEARNER_ID, seeded["_id"])
        await progress_store.set_completion(db, LEARNER_ID, chapter["lessons"][0]["_id"])

        result = await content_store.delete_chapter(db, storage, chapter["_id"])

        assert result == {"lessons_deleted": 2}
        assert await db.lessons.count_documents({}) == 0
        assert await db.lesson_progress.count_documents({}) == 0
        assert set(s3.deleted) == {"thumb-1-1.png", "video-1-1.mp4", "thumb-1-2.png", "video-1-2.mp4"}

    async def test_update_title(self, db, seed_course):
        seeded = await seed_course(chapters=1, lessons=0)
        updated = await content_store.update_chapter(db, seeded["chapters"][0]["_id"], {"title": "Renamed"})
        assert updated["title"] == "Renamed"
        assert updated["position"] == 1

    async def test_reorder(self, db, seed_course):
        seeded = await seed_course(chapters=3, lessons=0)
        ids = [c["_id"] for c in seeded["chapters"]]

        chapters = await content_store.reorder_chapters(db, seeded["_id"], [ids[2], ids[0], ids[1]])

        assert [c["_id"] for c in chapters] == [ids[2], ids[0], ids[1]]
        assert [c["position"] for c in chapters] == [1, 2, 3]
        course = await db.courses.find_one({"_id": ObjectId(seeded["_id"])})
        assert [str(c) for c in course["chapters"]] == [ids[2], ids[0], ids[1]]

    async def test_reorder_requires_every_chapter(self, db, seed_course):
        seeded = await seed_course(chapters=2, lessons=0)
        with pytest.raises(ValidationError):
            await content_store.reorder_chapters(db, seeded["_id"], [seeded["chapters"][0]["_id"]])

    async def test_list_by_course(self, db, seed_course):
        first = await seed_course(chapters=2, lessons=1)
        await seed_course(chapters=1, lessons=0, title="Another")

        chapters = await content_store.list_chapters(db, first["_id"])

        assert [c["title"] for c in chapters] == ["Chapter 1", "Chapter 2"]
        assert len(chapters[0]["lessons"]) == 1


# ==================== Lessons ====================

class TestLessons:
    async def test_positions_within_chapter(self, db, seed_course):
        seeded = await seed_course(chapters=2, lessons=3)
        for chapter in seeded["chapters"]:
            assert [l["position"] for l in chapter["lessons"]] == [1, 2, 3]

    async def test_create_for_missing_chapter(self, db):
        with pytest.raises(NotFoundError):
            await content_store.create_lesson(db, str(ObjectId()), {"title": "Nowhere"})

    async def test_delete_shifts_later_siblings(self, db, seed_course, storage):
        seeded = await seed_course(chapters=1, lessons=4)
        chapter = seeded["chapters"][0]
        lessons = chapter["lessons"]

        result = await content_store.delete_lesson(db, storage, lessons[1]["_id"])

        assert result == {"shifted": 2}
        remaining = await db.lessons.find({"chapter_id": ObjectId(chapter["_id"])}).sort("position", 1).to_list(None)
        assert [(str(l["_id"]), l["position"]) for l in remaining] == [
            (lessons[0]["_id"], 1), (lessons[2]["_id"], 2), (lessons[3]["_id"], 3),
        ]

    async def test_delete_survives_media_failure(self, db, seed_course, storage, s3):
        seeded = await seed_course(chapters=1, lessons=1)
        lesson = seeded["chapters"][0]["lessons"][0]
        s3.failing_keys.add(lesson["video_key"])

        await content_store.delete_lesson(db, storage, lesson["_id"])

        assert await db.lessons.count_documents({}) == 0
        assert s3.deleted == [lesson["thumbnail_key"]]

    async def test_update_ignores_position(self, db, seed_course):
        seeded = await seed_course(chapters=1, lessons=2)
        lesson = seeded["chapters"][0]["lessons"][0]

        updated = await content_store.update_lesson(db, lesson["_id"], {"title": "New", "position": 9})

        assert updated["title"] == "New"
        assert updated["position"] == 1

    async def test_reorder(self, db, seed_course):
        seeded = await seed_course(chapters=1, lessons=2)
        chapter = seeded["chapters"][0]
        ids = [l["_id"] for l in chapter["lessons"]]

        lessons = await content_store.reorder_lessons(db, chapter["_id"], list(reversed(ids)))

        assert [(l["_id"], l["position"]) for l in lessons] == [(ids[1], 1), (ids[0], 2)]


# ==================== Cascades ====================

class TestDeleteCourse:
    async def test_cascade(self, db, seed_course, storage, s3):
        seeded = await seed_course(chapters=2, lessons=2)
        await enrollment_store.enroll(db, LEARNER_ID, seeded["_id"])
        await progress_store.set_completion(db, LEARNER_ID, seeded["chapters"][0]["lessons"][0]["_id"])

        result = await content_store.delete_course(db, storage, seeded["_id"])

        assert result == {"chapters_deleted": 2, "lessons_deleted": 4}
        assert await db.courses.count_documents({}) == 0
        assert await db.chapters.count_documents({"course_id": ObjectId(seeded["_id"])}) == 0
        assert await db.lessons.count_documents({}) == 0
        assert await db.lesson_progress.count_documents({}) == 0
        assert "thumb-course.png" in s3.deleted
        assert len(s3.deleted) == 9

    async def test_unknown_course(self, db, storage):
        with pytest.raises(NotFoundError):
            await content_store.delete_course(db, storage, str(ObjectId()))

    async def test_sweep_orphans_after_interrupted_cascade(self, db, seed_course):
        seeded = await seed_course(chapters=2, lessons=2)
        keep = await seed_course(chapters=1, lessons=1, title="Keeper")
        # course removed without its children
        await db.courses.delete_one({"_id": ObjectId(seeded["_id"])})

        summary = await content_store.sweep_orphans(db)

        assert summary["chapters_deleted"] == 2
        assert summary["lessons_deleted"] == 4
        assert await db.chapters.count_documents({}) == 1
        assert await db.lessons.count_documents({}) == 1
        assert (await content_store.get_course_by_id(db, keep["_id"]))["chapters"]

        again = await content_store.sweep_orphans(db)
        assert again == {
            "chapters_deleted": 0, "lessons_deleted": 0, "progress_deleted": 0,
            "refs_dropped": 0, "positions_fixed": 0,
        }

    async def test_sweep_drops_dangling_refs(self, db, seed_course):
        seeded = await seed_course(chapters=2, lessons=0)
        await db.chapters.delete_one({"_id": ObjectId(seeded["chapters"][0]["_id"])})

        summary = await content_store.sweep_orphans(db)

        assert summary["refs_dropped"] == 1
        course = await db.courses.find_one({"_id": ObjectId(seeded["_id"])})
        assert [str(c) for c in course["chapters"]] == [seeded["chapters"][1]["_id"]]

    async def test_sweep_closes_gap_from_interrupted_lesson_delete(self, db, seed_course):
        seeded = await seed_course(chapters=1, lessons=3)
        chapter = seeded["chapters"][0]
        first = ObjectId(chapter["lessons"][0]["_id"])
        # lesson unlinked and removed, sibling shift never ran
        await db.chapters.update_one({"_id": ObjectId(chapter["_id"])}, {"$pull": {"lessons": first}})
        await db.lessons.delete_one({"_id": first})

        summary = await content_store.sweep_orphans(db)
        await content_store.create_lesson(db, chapter["_id"], {"title": "After sweep"})

        assert summary["positions_fixed"] == 2
        assert await _positions(db, "lessons", "chapter_id", chapter["_id"]) == [1, 2, 3]
        latest = await db.lessons.find_one({"title": "After sweep"})
        assert latest["position"] == 3

    async def test_sweep_closes_gap_from_interrupted_chapter_delete(self, db, seed_course):
        seeded = await seed_course(chapters=3, lessons=0)
        middle = ObjectId(seeded["chapters"][1]["_id"])
        # chapter removed before the renumber step
        await db.courses.update_one({"_id": ObjectId(seeded["_id"])}, {"$pull": {"chapters": middle}})
        await db.chapters.delete_one({"_id": middle})

        await content_store.sweep_orphans(db)
        await content_store.create_chapter(db, seeded["_id"], "After sweep")

        assert await _positions(db, "chapters", "course_id", seeded["_id"]) == [1, 2, 3]
        course = await db.courses.find_one({"_id": ObjectId(seeded["_id"])})
        assert len(course["chapters"]) == 3
