"""Tests for the indexing orchestrator and directory watching."""

import asyncio
import time

import pytest

from pkb.errors import DatabaseError, FileProcessingError, KnowledgeBaseError
from pkb.indexer import IndexingOrchestrator, collect_files
from pkb.models import DirectoryOptions, DocumentType, IndexingStatus, IndexOptions, RelationshipType
from pkb.storage.base import VectorIndex

from conftest import FakeCompletion, FailingEmbedder, HashingEmbedder


class RecordingIndex(VectorIndex):
    """Remote-style vector index double that records calls."""

    def __init__(self, fail_delete=False, fail_upsert=False):
        self.vectors: dict[str, list[float]] = {}
        self.deleted: list[str] = []
        self.fail_delete = fail_delete
        self.fail_upsert = fail_upsert

    def upsert(self, id, vector, metadata):
        if self.fail_upsert:
            raise ConnectionError("vector service down")
        self.vectors[id] = vector

    def query(self, vector, top_k=10, filter=None, offset=0):
        return []

    def delete_many(self, ids):
        if self.fail_delete:
            raise ConnectionError("vector service down")
        self.deleted.extend(ids)
        for i in ids:
            self.vectors.pop(i, None)

    def count(self):
        return len(self.vectors)


def _orchestrator(store, config, **kwargs):
    from pkb.embeddings.embedder import EmbeddingAdapter

    embedder = kwargs.pop("embedder", EmbeddingAdapter(HashingEmbedder()))
    return IndexingOrchestrator(store, embedder=embedder, config=config, **kwargs)


def test_index_document_is_idempotent(store, config, docs_dir):
    orch = _orchestrator(store, config)
    path = docs_dir / "astronomy.txt"

    first = asyncio.run(orch.index_document(path))
    count = store.count_chunks(first)
    second = asyncio.run(orch.index_document(path))

    assert first == second
    assert store.count_chunks(second) == count
    assert len(store.list_documents()) == 1
    assert store.get_document(first).path == str(path.resolve())


def test_index_document_same_path_spelled_differently(store, config, docs_dir, monkeypatch):
    orch = _orchestrator(store, config)
    monkeypatch.chdir(docs_dir)
    relative = asyncio.run(orch.index_document("cooking.txt"))
    absolute = asyncio.run(orch.index_document(docs_dir / "cooking.txt"))
    assert relative == absolute


def test_index_document_missing_file(store, config, temp_dir):
    orch = _orchestrator(store, config)
    with pytest.raises(FileProcessingError):
        asyncio.run(orch.index_document(temp_dir / "missing.txt"))


def test_index_document_wraps_unexpected_errors(store, config, docs_dir, monkeypatch):
    orch = _orchestrator(store, config)
    monkeypatch.setattr("pkb.indexer.build_chunks", lambda *a, **k: 1 / 0)
    with pytest.raises(KnowledgeBaseError) as exc:
        asyncio.run(orch.index_document(docs_dir / "cooking.txt"))
    assert isinstance(exc.value.cause, ZeroDivisionError)


def test_index_document_propagates_database_errors(store, config, docs_dir, monkeypatch):
    orch = _orchestrator(store, config)

    def broken(document, chunks):
        raise DatabaseError("disk full")

    monkeypatch.setattr(store, "save_document", broken)
    with pytest.raises(DatabaseError):
        asyncio.run(orch.index_document(docs_dir / "cooking.txt"))


def test_index_document_with_enrichment(store, config, docs_dir, completion):
    orch = _orchestrator(store, config, completion=completion)
    doc_id = asyncio.run(orch.index_document(
        docs_dir / "finance.txt",
        IndexOptions(generate_summary=True, extract_key_points=True, tags=["money"]),
    ))
    doc = store.get_document(doc_id)
    assert doc.summary == "A short summary."
    assert doc.key_points == ["First point", "Second point"]
    assert doc.tags == ["money"]

    contains = [r for r in store.list_relationships(0.0) if r.relationship_type == RelationshipType.CONTAINS]
    assert {r.source_id for r in contains} == {doc_id}
    assert len(contains) == 3


def test_concepts_can_be_disabled(store, config, docs_dir, completion):
    orch = _orchestrator(store, config, completion=completion)
    asyncio.run(orch.index_document(docs_dir / "finance.txt", IndexOptions(extract_concepts=False)))
    assert store.stats()["concepts"] == 0


def test_bad_concept_response_keeps_document(store, config, docs_dir):
    orch = _orchestrator(store, config, completion=FakeCompletion(concepts="not json"))
    doc_id = asyncio.run(orch.index_document(docs_dir / "finance.txt"))
    assert store.get_document(doc_id) is not None
    assert store.stats()["concepts"] == 0


def test_embeddings_stored_in_memory_index(store, config, docs_dir):
    from pkb.storage.memory import InMemoryVectorIndex

    index = InMemoryVectorIndex(store)
    orch = _orchestrator(store, config, vector_index=index)
    doc_id = asyncio.run(orch.index_document(docs_dir / "astronomy.txt", IndexOptions(generate_embeddings=True)))
    assert index.count() == store.count_chunks(doc_id)
    assert all(c.embedding is not None for c in store.get_chunks(doc_id))


def test_embedding_failures_keep_chunks(store, config, docs_dir):
    from pkb.embeddings.embedder import EmbeddingAdapter

    index = RecordingIndex()
    orch = _orchestrator(store, config, vector_index=index, embedder=EmbeddingAdapter(FailingEmbedder()))
    doc_id = asyncio.run(orch.index_document(docs_dir / "astronomy.txt", IndexOptions(generate_embeddings=True)))
    assert store.count_chunks(doc_id) >= 1
    assert all(c.embedding is None for c in store.get_chunks(doc_id))
    assert index.vectors == {}


def test_vector_failures_are_logged_not_raised(store, config, docs_dir):
    orch = _orchestrator(store, config, vector_index=RecordingIndex(fail_upsert=True))
    doc_id = asyncio.run(orch.index_document(docs_dir / "astronomy.txt", IndexOptions(generate_embeddings=True)))
    assert store.get_document(doc_id) is not None


def test_reindex_removes_stale_vectors(store, config, temp_dir):
    path = temp_dir / "growing.txt"
    path.write_text("\n\n".join(["word " * 30] * 4))
    index = RecordingIndex()
    orch = _orchestrator(store, config, vector_index=index)

    doc_id = asyncio.run(orch.index_document(path, IndexOptions(generate_embeddings=True)))
    assert store.count_chunks(doc_id) > 1
    path.write_text("tiny")
    asyncio.run(orch.index_document(path, IndexOptions(generate_embeddings=True)))

    assert set(index.vectors) == {f"chunk_{doc_id}_0"}
    assert f"chunk_{doc_id}_1" in index.deleted


def test_reindex_without_embeddings_clears_reused_vectors(store, config, temp_dir):
    path = temp_dir / "note.txt"
    path.write_text("Original text about lighthouses.")
    index = RecordingIndex()
    orch = _orchestrator(store, config, vector_index=index)

    doc_id = asyncio.run(orch.index_document(path, IndexOptions(generate_embeddings=True)))
    assert set(index.vectors) == {f"chunk_{doc_id}_0"}

    path.write_text("Rewritten text about submarines.")
    asyncio.run(orch.index_document(path, IndexOptions(generate_embeddings=False)))

    assert index.vectors == {}
    assert f"chunk_{doc_id}_0" in index.deleted
    assert store.get_chunk(f"chunk_{doc_id}_0").content == "Rewritten text about submarines."


def test_reindex_with_fresh_embeddings_keeps_vectors(store, config, docs_dir):
    index = RecordingIndex()
    orch = _orchestrator(store, config, vector_index=index)
    options = IndexOptions(generate_embeddings=True)

    doc_id = asyncio.run(orch.index_document(docs_dir / "astronomy.txt", options))
    asyncio.run(orch.index_document(docs_dir / "astronomy.txt", options))

    assert set(index.vectors) == set(store.chunk_ids(doc_id))
    assert index.deleted == []


def test_delete_document(store, config, docs_dir, completion):
    index = RecordingIndex()
    orch = _orchestrator(store, config, vector_index=index, completion=completion)
    doc_id = asyncio.run(orch.index_document(docs_dir / "astronomy.txt", IndexOptions(generate_embeddings=True)))

    assert asyncio.run(orch.delete_document(doc_id)) is True
    assert store.get_document(doc_id) is None
    assert store.count_chunks(doc_id) == 0
    assert index.vectors == {}
    assert all(r.relationship_type != RelationshipType.CONTAINS for r in store.list_relationships(0.0))
    assert asyncio.run(orch.delete_document(doc_id)) is False


def test_delete_aborts_when_vector_delete_fails(store, config, docs_dir):
    index = RecordingIndex()
    orch = _orchestrator(store, config, vector_index=index)
    doc_id = asyncio.run(orch.index_document(docs_dir / "astronomy.txt", IndexOptions(generate_embeddings=True)))

    index.fail_delete = True
    with pytest.raises(KnowledgeBaseError):
        asyncio.run(orch.delete_document(doc_id))
    assert store.get_document(doc_id) is not None
    assert store.count_chunks(doc_id) >= 1


def test_collect_files(docs_dir):
    (docs_dir / ".hidden.txt").write_text("secret")
    sub = docs_dir / "sub"
    sub.mkdir()
    (sub / "nested.md").write_text("# nested")

    flat = collect_files(docs_dir, DirectoryOptions())
    assert [p.name for p in flat] == ["astronomy.txt", "cooking.txt", "finance.txt"]

    deep = collect_files(docs_dir, DirectoryOptions(recursive=True))
    assert [p.name for p in deep] == ["astronomy.txt", "cooking.txt", "finance.txt", "nested.md"]

    only_md = collect_files(docs_dir, DirectoryOptions(recursive=True, file_types=[DocumentType.MARKDOWN]))
    assert [p.name for p in only_md] == ["nested.md"]

    assert len(collect_files(docs_dir, DirectoryOptions(max_files=2))) == 2


def test_index_directory_progress(store, config, docs_dir):
    orch = _orchestrator(store, config)
    snapshots = []
    progress = asyncio.run(orch.index_directory(docs_dir, DirectoryOptions(on_progress=snapshots.append)))

    assert progress.total == 3
    assert progress.processed == 3
    assert progress.failed == 0
    assert progress.status == IndexingStatus.COMPLETED
    assert progress.start_time is not None and progress.end_time is not None

    assert snapshots[0].total == 3 and snapshots[0].processed == 0
    assert [s.processed for s in snapshots[1:4]] == [1, 2, 3]
    assert snapshots[-1].status == IndexingStatus.COMPLETED
    # snapshots are copies
    snapshots[0].processed = 99
    assert orch.get_progress().processed == 3


def test_index_directory_counts_failures(store, config, docs_dir):
    (docs_dir / "junk.bin").write_bytes(bytes(range(256)) * 4)
    orch = _orchestrator(store, config)
    progress = asyncio.run(orch.index_directory(docs_dir))
    assert progress.total == 4
    assert progress.processed == 3
    assert progress.failed == 1
    assert progress.status == IndexingStatus.COMPLETED


def test_index_directory_missing_root(store, config, temp_dir):
    orch = _orchestrator(store, config)
    with pytest.raises(KnowledgeBaseError):
        asyncio.run(orch.index_directory(temp_dir / "nope"))
    plain = temp_dir / "plain.txt"
    plain.write_text("not a directory")
    with pytest.raises(KnowledgeBaseError):
        asyncio.run(orch.index_directory(plain))


def test_index_directory_run_level_error(store, config, docs_dir, monkeypatch):
    def explode(root, options):
        raise OSError("disk vanished")

    monkeypatch.setattr("pkb.indexer.collect_files", explode)
    orch = _orchestrator(store, config)
    progress = asyncio.run(orch.index_directory(docs_dir))
    assert progress.status == IndexingStatus.ERROR
    assert "disk vanished" in progress.error


def test_pause_and_resume(store, config, docs_dir):
    for i in range(4):
        (docs_dir / f"extra{i}.txt").write_text(f"Extra document number {i}.")
    orch = _orchestrator(store, config)
    seen = []

    def on_progress(p):
        seen.append(p.status)
        if p.processed == 2 and p.status == IndexingStatus.INDEXING:
            assert orch.pause() is True

    async def run():
        task = asyncio.create_task(orch.index_directory(docs_dir, DirectoryOptions(on_progress=on_progress)))
        for _ in range(200):
            await asyncio.sleep(0.01)
            if orch.get_progress().status == IndexingStatus.PAUSED and orch.get_progress().processed == 2:
                break
        paused = orch.get_progress()
        await asyncio.sleep(0.05)
        assert orch.get_progress().processed == paused.processed
        assert orch.resume() is True
        return paused, await task

    paused, final = asyncio.run(run())
    assert paused.status == IndexingStatus.PAUSED
    assert final.status == IndexingStatus.COMPLETED
    assert final.processed == 7
    assert orch.resume() is False
    assert orch.pause() is False


def test_watch_directory_indexes_changes(store, config, temp_dir):
    watched = temp_dir / "watched"
    watched.mkdir()
    orch = _orchestrator(store, config)

    async def run():
        await orch.watch_directory(watched, DirectoryOptions(file_types=[DocumentType.TEXT]))
        assert orch.watchers.is_watching(watched.resolve())
        (watched / "note.txt").write_text("Watched note about lighthouses.")
        (watched / "skip.md").write_text("# not a text file")
        (watched / ".hidden.txt").write_text("hidden")
        for _ in range(100):
            await asyncio.sleep(0.05)
            if store.list_documents():
                break
        await asyncio.sleep(0.3)
        assert orch.stop_watching(watched) is True
        assert orch.stop_watching(watched) is False

    asyncio.run(run())
    assert [d.title for d in store.list_documents()] == ["note.txt"]


def test_stop_all_watching_prevents_dispatch(store, config, temp_dir):
    watched = temp_dir / "watched"
    watched.mkdir()
    orch = _orchestrator(store, config)

    async def run():
        await orch.watch_directory(watched)
        handle = orch.watchers._handles[watched.resolve()]
        orch.stop_all_watching()
        assert orch.watchers.paths == []
        (watched / "late.txt").write_text("arrived after stop")
        # a dispatch that was already queued must not index once stopped
        await orch.watchers._dispatch(handle, watched / "late.txt")
        await asyncio.sleep(0.3)

    asyncio.run(run())
    assert store.list_documents() == []


def test_watch_missing_directory(store, config, temp_dir):
    orch = _orchestrator(store, config)
    with pytest.raises(KnowledgeBaseError):
        asyncio.run(orch.watch_directory(temp_dir / "absent"))


def test_watch_handler_debounces(temp_dir):
    from pkb.watcher import IngestHandler

    batches = []
    handler = IngestHandler(debounce=0.1)
    handler.set_callback(batches.append)

    class Event:
        is_directory = False

        def __init__(self, src):
            self.src_path = src

    for name in ("a.txt", "b.txt", "a.txt", ".swap"):
        handler.on_modified(Event(str(temp_dir / name)))
    time.sleep(0.4)
    assert batches == [[str(temp_dir / "a.txt"), str(temp_dir / "b.txt")]]


def test_watch_handler_skips_hidden_directories(temp_dir):
    from pkb.watcher import IngestHandler

    root = temp_dir / ".config" / "notes"
    handler = IngestHandler(debounce=0.1, root=root)
    assert handler._is_candidate(str(root / "todo.txt"))
    assert handler._is_candidate(str(root / "sub" / "todo.txt"))
    assert not handler._is_candidate(str(root / ".git" / "HEAD"))
    assert not handler._is_candidate(str(root / "sub" / ".cache" / "x.txt"))


def test_dispatch_is_serialized_per_watched_path(temp_dir):
    from pkb.watcher import IngestHandler, WatchHandle, WatchRegistry

    for name in ("a.txt", "b.txt", "c.txt"):
        (temp_dir / name).write_text(name)
    running = 0
    peak = 0
    order = []

    async def slow_index(path, options):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.05)
        order.append(path.name)
        running -= 1
        return path.name

    registry = WatchRegistry(slow_index, debounce=0.1)

    async def run():
        handle = WatchHandle(
            path=temp_dir, options=DirectoryOptions(), loop=asyncio.get_running_loop(), handler=IngestHandler()
        )
        await asyncio.gather(*(registry._dispatch(handle, temp_dir / n) for n in ("a.txt", "b.txt", "c.txt")))

    asyncio.run(run())
    assert peak == 1
    assert order == ["a.txt", "b.txt", "c.txt"]
