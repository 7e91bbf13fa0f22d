import asyncio
import json
from pathlib import Path

import pytest

from fakes import FakeResponse, FakeSession, make_question
import RetroTrivia.src.__main__ as entry
from RetroTrivia.src.cli import question_payload, status_payload
from RetroTrivia.src.config import BundleConfig, RecordStoreConfig, Settings, StorageConfig
from RetroTrivia.src.exceptions import BundleEmptyError
from RetroTrivia.src.kv_store import MemoryStore
from RetroTrivia.src.service_container import ServiceContainer, build_container
from RetroTrivia.src.sources.bundle import BundledQuestionSet
from RetroTrivia.src.sources.record_store import RecordStoreClient


def memory_settings(**kwargs) -> Settings:
    return Settings(storage=StorageConfig(backend="memory"), **kwargs)


def printed(capsys):
    return [json.loads(line) for line in capsys.readouterr().out.splitlines()]


def test_question_payload_hides_answer_unless_revealed():
    q = make_question("q1", "easy")
    assert "answer" not in question_payload(q)
    assert question_payload(q, reveal=True)["answer"] == "A"
    assert status_payload("ok") == {"type": "status", "text": "ok"}


def test_container_builds_services_once():
    container = ServiceContainer(settings=memory_settings())
    manager = container.question_manager()
    assert container.question_manager() is manager
    assert isinstance(container.store(), MemoryStore)
    assert manager.record_store is None
    assert manager.cache is container.cache()
    container.close()


def test_container_uses_record_store_when_configured():
    settings = memory_settings(record_store=RecordStoreConfig(base_url="https://records.example.test"))
    container = ServiceContainer(settings=settings)
    assert isinstance(container.question_manager().record_store, RecordStoreClient)
    container.close()


def test_container_rejects_empty_bundle(tmp_path: Path):
    empty = tmp_path / "empty.json"
    empty.write_text("[]", encoding="utf-8")
    container = ServiceContainer(settings=memory_settings(bundle=BundleConfig(path=str(empty))))
    with pytest.raises(BundleEmptyError):
        container.question_manager()


def test_build_container_reads_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("RETROTRIVIA_ENV", raising=False)
    path = tmp_path / "settings.yaml"
    path.write_text("storage:\n  backend: memory\npool:\n  target_size: 7\n", encoding="utf-8")
    container = build_container(path)
    assert container.settings.pool.target_size == 7
    assert isinstance(container.store(), MemoryStore)


def test_run_prints_bundled_questions(capsys):
    container = ServiceContainer(settings=memory_settings())
    args = entry.parse_args(["--bundle-only", "--count", "3", "--status", "--reveal"])
    assert asyncio.run(entry.run(args, container)) == 0

    lines = printed(capsys)
    questions, status = lines[:-1], lines[-1]
    assert len(questions) == 3
    assert len({q["id"] for q in questions}) == 3
    assert all(q["source"] == "bundle" and "answer" in q for q in questions)
    total = len(BundledQuestionSet())
    assert status == {
        "type": "status",
        "text": f"Pool: {total} total, {total - 3} unanswered, 3 asked (source: bundle)",
    }


def test_run_applies_difficulty(capsys):
    container = ServiceContainer(settings=memory_settings())
    args = entry.parse_args(["--bundle-only", "--difficulty", "hard", "--count", "4"])
    asyncio.run(entry.run(args, container))
    questions = printed(capsys)
    assert len(questions) == 4
    assert {q["difficulty"] for q in questions} == {"hard"}
    assert "answer" not in questions[0]


def test_main_wires_configuration(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys):
    monkeypatch.delenv("RETROTRIVIA_ENV", raising=False)
    config = tmp_path / "settings.yaml"
    config.write_text(
        f"log_path: {tmp_path / 'retrotrivia.log'}\nstorage:\n  backend: memory\n",
        encoding="utf-8",
    )
    stopped = []

    class Listener:
        def stop(self):
            stopped.append(True)

    monkeypatch.setattr(entry, "_ensure_utf8_stdout", lambda: None)
    monkeypatch.setattr(entry, "setup_logging", lambda *a, **kw: Listener())

    assert entry.main(["--config", str(config), "--bundle-only", "--count", "2"]) == 0
    assert len(printed(capsys)) == 2
    assert stopped == [True]


def container_with_session(*responses):
    settings = memory_settings(
        record_store=RecordStoreConfig(base_url="https://records.example.test", upload_pause_s=0)
    )
    container = ServiceContainer(settings=settings)
    session = FakeSession(*responses)
    container._record_store = RecordStoreClient(settings.record_store, session=session)
    return container, session


def test_upload_seeds_record_store_from_json(tmp_path: Path, capsys):
    source = tmp_path / "seed.json"
    source.write_text(
        json.dumps([make_question(f"s{i}", "easy").to_dict() for i in range(3)]), encoding="utf-8"
    )
    container, session = container_with_session(
        FakeResponse({"records": [{"recordName": f"s{i}"} for i in range(3)]})
    )
    args = entry.parse_args(["--upload", str(source)])

    assert asyncio.run(entry.run(args, container)) == 0
    assert printed(capsys) == [{"type": "uploaded", "saved": 3, "failed": 0}]
    operations = session.calls[0]["json"]["operations"]
    assert [op["record"]["recordName"] for op in operations] == ["s0", "s1", "s2"]
    assert container._record_store is None


def test_delete_remote_reports_count(capsys):
    container, session = container_with_session(
        FakeResponse({"records": [{"recordName": "r1"}, {"recordName": "r2"}]}),
        FakeResponse({"records": [{"recordName": "r1"}, {"recordName": "r2"}]}),
    )
    args = entry.parse_args(["--delete-remote"])

    assert asyncio.run(entry.run(args, container)) == 0
    assert printed(capsys) == [{"type": "deleted", "count": 2}]
    assert [c["url"].rsplit("/", 2)[-2:] for c in session.calls] == [
        ["records", "query"],
        ["records", "modify"],
    ]


def test_upload_with_failures_exits_nonzero(tmp_path: Path, capsys):
    source = tmp_path / "seed.json"
    source.write_text(json.dumps([make_question("s0").to_dict()]), encoding="utf-8")
    container, _ = container_with_session(FakeResponse({}, status_code=500))
    args = entry.parse_args(["--upload", str(source)])

    assert asyncio.run(entry.run(args, container)) == 1
    assert printed(capsys) == [{"type": "uploaded", "saved": 0, "failed": 1}]
