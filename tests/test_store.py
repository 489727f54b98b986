"""
Tests for the conversation stores: visit numbering, optimistic locking,
append-only enforcement, and the GCS layout.
"""

import json

import pytest
from google.api_core.exceptions import ServiceUnavailable

from conftest import make_mock_gcs
from medichat.intake.conversation import ConversationStatus, MessageRole
from medichat.intake.errors import ConversationConflictError, NotFoundError, PersistenceError
from medichat.intake.store import GCSConversationStore, InMemoryConversationStore


@pytest.fixture(params=["memory", "gcs"])
def any_store(request):
    if request.param == "memory":
        return InMemoryConversationStore()
    return GCSConversationStore(make_mock_gcs())


class TestContract:

    def test_visit_numbers_are_sequential_per_patient(self, any_store):
        numbers = [any_store.create("PT-1")[0].visit_number for _ in range(3)]
        other = any_store.create("PT-2")[0]
        assert numbers == [1, 2, 3]
        assert other.visit_number == 1
        assert any_store.count_for_patient("PT-1") == 3

    def test_load_unknown_raises_not_found(self, any_store):
        with pytest.raises(NotFoundError):
            any_store.load("does-not-exist")

    def test_save_then_load(self, any_store):
        conversation, gen = any_store.create("PT-1")
        conversation.append_message(MessageRole.PATIENT, "headache")
        any_store.save(conversation, gen)
        loaded, _ = any_store.load(conversation.id)
        assert [m.content for m in loaded.messages] == ["headache"]

    def test_stale_generation_conflicts(self, any_store):
        conversation, gen = any_store.create("PT-1")
        first, _ = any_store.load(conversation.id)
        second, _ = any_store.load(conversation.id)
        first.append_message(MessageRole.PATIENT, "one")
        any_store.save(first, gen)
        second.append_message(MessageRole.PATIENT, "two")
        with pytest.raises(ConversationConflictError):
            any_store.save(second, gen)

    def test_conflict_is_a_persistence_error(self):
        assert issubclass(ConversationConflictError, PersistenceError)

    def test_messages_cannot_be_removed(self, any_store):
        conversation, gen = any_store.create("PT-1")
        conversation.append_message(MessageRole.PATIENT, "one")
        gen = any_store.save(conversation, gen)
        conversation.messages.clear()
        with pytest.raises(PersistenceError):
            any_store.save(conversation, gen)

    def test_messages_cannot_be_rewritten(self, any_store):
        conversation, gen = any_store.create("PT-1")
        conversation.append_message(MessageRole.PATIENT, "one")
        gen = any_store.save(conversation, gen)
        conversation.messages[0].content = "edited"
        with pytest.raises(PersistenceError):
            any_store.save(conversation, gen)

    def test_status_cannot_move_backwards(self, any_store):
        conversation, gen = any_store.create("PT-1")
        conversation.transition_to(ConversationStatus.AWAITING_CLINICIAN)
        gen = any_store.save(conversation, gen)
        conversation.status = ConversationStatus.IN_PROGRESS
        with pytest.raises(PersistenceError):
            any_store.save(conversation, gen)

    def test_summary_is_write_once(self, any_store):
        conversation, gen = any_store.create("PT-1")
        conversation.clinical_summary = "first"
        gen = any_store.save(conversation, gen)
        conversation.clinical_summary = "second"
        with pytest.raises(PersistenceError):
            any_store.save(conversation, gen)

    def test_get_by_visit(self, any_store):
        any_store.create("PT-1")
        second, _ = any_store.create("PT-1")
        assert any_store.get_by_visit("PT-1", 2).id == second.id
        assert any_store.get_by_visit("PT-1", 3) is None
        assert any_store.get_by_visit("PT-unknown", 1) is None

    def test_list_for_patient_ordered(self, any_store):
        for _ in range(3):
            any_store.create("PT-1")
        any_store.create("PT-2")
        listed = any_store.list_for_patient("PT-1")
        assert [c.visit_number for c in listed] == [1, 2, 3]
        assert all(c.patient_id == "PT-1" for c in listed)

    def test_list_by_status(self, any_store):
        a, gen = any_store.create("PT-1")
        any_store.create("PT-2")
        a.transition_to(ConversationStatus.AWAITING_CLINICIAN)
        any_store.save(a, gen)
        awaiting = any_store.list_by_status(ConversationStatus.AWAITING_CLINICIAN)
        assert [c.id for c in awaiting] == [a.id]


class TestInMemoryIsolation:

    def test_returned_objects_are_copies(self):
        store = InMemoryConversationStore()
        conversation, _ = store.create("PT-1")
        conversation.append_message(MessageRole.PATIENT, "not saved")
        loaded, _ = store.load(conversation.id)
        assert loaded.messages == []


class TestGCSLayout:

    def test_blob_paths_and_index(self):
        gcs = make_mock_gcs()
        store = GCSConversationStore(gcs)
        conversation, _ = store.create("PT-7")
        assert "conversations/patient_PT-7/visit_0001.json" in gcs._storage
        index = json.loads(gcs._storage[f"conversation_index/{conversation.id}.json"])
        assert index == {"patient_id": "PT-7", "visit_number": 1}

    def test_create_refuses_to_overwrite_existing_visit(self):
        gcs = make_mock_gcs()
        store = GCSConversationStore(gcs)
        store.create("PT-7")
        # Another process wrote visit 2 after we counted
        gcs._storage["conversations/patient_PT-7/visit_0002.json"] = "{}"
        gcs._generations["conversations/patient_PT-7/visit_0002.json"] = 1
        store.count_for_patient = lambda patient_id: 1
        with pytest.raises(ConversationConflictError):
            store.create("PT-7")

    def test_list_patient_ids(self):
        store = GCSConversationStore(make_mock_gcs())
        store.create("PT-1")
        store.create("PT-2")
        assert sorted(store.list_patient_ids()) == ["PT-1", "PT-2"]

    def test_storage_failure_surfaces_as_persistence_error(self):
        gcs = make_mock_gcs()
        store = GCSConversationStore(gcs)
        conversation, gen = store.create("PT-1")

        def _broken(path):
            raise RuntimeError("network down")

        gcs.bucket.blob = _broken
        with pytest.raises(PersistenceError):
            store.load(conversation.id)

    def test_failed_index_write_leaves_no_visit_behind(self):
        gcs = make_mock_gcs()
        store = GCSConversationStore(gcs)
        make_blob = gcs.bucket.blob

        def _index_unavailable(path):
            blob = make_blob(path)
            if path.startswith("conversation_index/"):
                def _fail(*args, **kwargs):
                    raise ServiceUnavailable("backend unavailable")
                blob.upload_from_string = _fail
            return blob

        gcs.bucket.blob = _index_unavailable
        with pytest.raises(PersistenceError):
            store.create("PT-1", "Headache")
        assert store.count_for_patient("PT-1") == 0

        gcs.bucket.blob = make_blob
        conversation, _ = store.create("PT-1", "Headache")
        assert conversation.visit_number == 1
        loaded, _ = store.load(conversation.id)
        assert [m.content for m in loaded.messages] == ["Headache"]
