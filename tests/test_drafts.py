from examroom.drafts import AttemptKey, DraftAnswer, FileDraftStore, MemoryDraftStore

KEY = AttemptKey(exam_id=3, submission_id=7)


def test_storage_name_is_derived_from_key():
    assert KEY.storage_name == "exam-3-attempt-7"


def test_record_merges_text_and_image():
    store = MemoryDraftStore()
    store.record(KEY, 1, text="4")
    store.record(KEY, 2, image="data:image/jpeg;base64,AAAA")
    draft = store.record(KEY, 1, text="2")
    assert draft[1] == DraftAnswer(text="2")
    assert draft[2].image == "data:image/jpeg;base64,AAAA"
    assert draft[2].is_answered
    assert not DraftAnswer().is_answered


def test_file_store_survives_a_new_instance(tmp_path):
    FileDraftStore(tmp_path).record(KEY, 5, text="2x")
    reloaded = FileDraftStore(tmp_path).get(KEY)
    assert reloaded == {5: DraftAnswer(text="2x")}


def test_attempts_are_isolated(tmp_path):
    store = FileDraftStore(tmp_path)
    store.record(KEY, 1, text="a")
    assert store.get(AttemptKey(3, 8)) == {}


def test_clear_removes_draft(tmp_path):
    store = FileDraftStore(tmp_path)
    store.record(KEY, 1, text="a")
    store.clear(KEY)
    assert store.get(KEY) == {}
    # clearing twice is fine
    store.clear(KEY)


def test_corrupt_file_reads_as_empty(tmp_path):
    store = FileDraftStore(tmp_path)
    (tmp_path / f"{KEY.storage_name}.json").write_text("{not json", encoding="utf-8")
    assert store.get(KEY) == {}
