import asyncio
import json
import shutil
import tempfile
import threading
import unittest
from pathlib import Path

from models import Language, StepOutcome, WritingMode
from services.project_store import ProjectStore
from services.writer_session import ChapterBusyError, ChapterNotFoundError, LastChapterError, SessionRegistry


class EchoClient:
    def __init__(self, reply):
        self.reply = reply
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        return self.reply


class GatedClient:
    """Holds every call open until the test releases the gate."""

    def __init__(self):
        self.called = threading.Event()
        self.gate = threading.Event()
        self.calls = 0

    def complete(self, prompt):
        self.calls += 1
        number = self.calls
        self.called.set()
        self.gate.wait(5)
        return {"response": f"reply number {number} arrived late"}


class WriterSessionTest(unittest.TestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.store = ProjectStore(self.tmp)
        self.client = EchoClient({"response": "The lanterns flickered as Mira crossed the square."})
        self.registry = SessionRegistry(self.store, self.client, target_words=50, interval_seconds=5)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_new_project_starts_with_first_chapter(self):
        session = self.registry.create(title="  Ember Road ", language=Language.ENGLISH)
        self.assertEqual(session.project.title, "Ember Road")
        self.assertEqual([c.title for c in session.project.chapters], ["Chapter 1"])
        self.assertEqual(session.project.current_chapter_id, session.project.chapters[0].id)
        self.assertTrue(self.store.project_file(session.project.id).exists())

    def test_generate_appends_and_persists(self):
        session = self.registry.create(title="Ember Road", language=Language.ENGLISH)

        result = asyncio.run(session.generate(mode=WritingMode.DESCRIPTION, genre="steampunk"))

        self.assertEqual(result.outcome, StepOutcome.APPENDED)
        self.assertEqual(session.current_chapter().content, "The lanterns flickered as Mira crossed the square.")
        self.assertIn("steampunk", self.client.prompts[0])
        self.assertTrue(self.client.prompts[0].startswith("Write in English language."))

        reloaded = self.store.load(session.project.id)
        self.assertEqual(reloaded.chapters[0].content, session.current_chapter().content)

    def test_generate_with_unrecognized_reply_leaves_chapter_untouched(self):
        self.client.reply = {"unexpected": True}
        session = self.registry.create()
        result = asyncio.run(session.generate())
        self.assertEqual(result.outcome, StepOutcome.UNRECOGNIZED_RESPONSE)
        self.assertEqual(session.current_chapter().content, "")

    def test_progress_resets_with_new_chapter(self):
        session = self.registry.create()
        first_id = session.project.current_chapter_id
        session.update_chapter(first_id, content="one two three four five")
        self.assertEqual(session.progress().current_word_count, 5)

        chapter = session.add_chapter()
        self.assertEqual(chapter.title, "Chapter 2")
        self.assertEqual(session.project.current_chapter_id, chapter.id)
        self.assertEqual(session.progress().current_word_count, 0)
        self.assertEqual(session.progress().target_word_count, 50)

        session.select_chapter(first_id)
        self.assertEqual(session.progress().current_word_count, 5)

    def test_edit_of_other_chapter_does_not_touch_document(self):
        session = self.registry.create()
        first_id = session.project.current_chapter_id
        second = session.add_chapter("Interlude")
        session.update_chapter(first_id, content="background edit", title="Prologue")
        self.assertEqual(session.document.text, "")
        self.assertEqual(session.project.chapter(first_id).title, "Prologue")
        self.assertEqual(session.project.current_chapter_id, second.id)

    def test_cannot_delete_only_chapter(self):
        session = self.registry.create()
        with self.assertRaises(LastChapterError):
            session.delete_chapter(session.project.current_chapter_id)
        with self.assertRaises(ChapterNotFoundError):
            session.delete_chapter("missing")

    def test_deleting_current_chapter_switches_to_first(self):
        session = self.registry.create()
        first_id = session.project.current_chapter_id
        second = session.add_chapter()
        session.delete_chapter(second.id)
        self.assertEqual(session.project.current_chapter_id, first_id)
        self.assertEqual(len(session.project.chapters), 1)

    def test_reset_chapter_writes_backup(self):
        session = self.registry.create()
        chapter_id = session.project.current_chapter_id
        session.update_chapter(chapter_id, content="Draft to throw away.")
        session.reset_chapter(chapter_id)

        self.assertEqual(session.current_chapter().content, "")
        backups = list(self.store.backups_dir.glob("*chapter-reset*.json"))
        self.assertEqual(len(backups), 1)
        self.assertEqual(json.loads(backups[0].read_text(encoding="utf-8"))["content"], "Draft to throw away.")

    def test_registry_reloads_from_disk_and_deletes_with_backup(self):
        session = self.registry.create(title="Persisted")
        project_id = session.project.id
        session.update_chapter(session.project.current_chapter_id, content="Saved words.")

        fresh = SessionRegistry(self.store, self.client)
        loaded = fresh.get(project_id)
        self.assertIsNotNone(loaded)
        self.assertEqual(loaded.document.text, "Saved words.")
        self.assertEqual([p.id for p in fresh.list_projects()], [project_id])

        self.assertTrue(fresh.delete(project_id))
        self.assertIsNone(self.store.load(project_id))
        self.assertTrue(any(self.store.backups_dir.glob(f"{project_id}-project-delete-*.json")))
        self.assertFalse(fresh.delete(project_id))

    def test_critique_does_not_modify_document(self):
        session = self.registry.create()
        session.update_chapter(session.project.current_chapter_id, content="Mira waited.")
        self.client.reply = {"choices": [{"message": {"content": "Pacing is slow."}}]}

        feedback = asyncio.run(session.critique())

        self.assertEqual(feedback, "Pacing is slow.")
        self.assertEqual(session.document.text, "Mira waited.")

    def test_autopilot_lifecycle_through_session(self):
        session = self.registry.create()
        self.client.reply = {"response": " ".join(["word"] * 120)}

        async def scenario():
            status = session.start_autopilot(interval_seconds=0.01, target_words=200)
            self.assertTrue(status.running)
            await asyncio.wait_for(session.autopilot.wait(), timeout=5)
            return session.autopilot_status()

        status = asyncio.run(scenario())
        self.assertTrue(status.completed)
        self.assertFalse(status.running)
        self.assertGreaterEqual(status.progress.current_word_count, 200)
        self.assertEqual(status.progress.target_word_count, 200)
        self.assertTrue(status.progress.complete)

    def test_chapter_switch_keeps_in_flight_guard(self):
        client = GatedClient()
        session = SessionRegistry(self.store, client).create()
        first_id = session.project.current_chapter_id

        async def scenario():
            pending = asyncio.create_task(session.generate())
            while not client.called.is_set():
                await asyncio.sleep(0.005)
            session.add_chapter()
            session.select_chapter(first_id)
            second = await session.generate()
            client.gate.set()
            first = await pending
            return first, second

        first, second = asyncio.run(scenario())

        self.assertEqual(second.outcome, StepOutcome.SKIPPED_BUSY)
        self.assertEqual(first.outcome, StepOutcome.APPENDED)
        self.assertEqual(client.calls, 1)
        self.assertEqual(session.document.text, "reply number 1 arrived late")
        self.assertEqual(session.current_chapter().content, session.document.text)
        self.assertEqual(self.store.load(session.project.id).chapter(first_id).content, session.document.text)

    def test_reset_and_delete_are_refused_while_generating(self):
        client = GatedClient()
        session = SessionRegistry(self.store, client).create()
        first_id = session.project.current_chapter_id

        async def scenario():
            pending = asyncio.create_task(session.generate())
            while not client.called.is_set():
                await asyncio.sleep(0.005)
            with self.assertRaises(ChapterBusyError):
                session.reset_chapter(first_id)
            session.add_chapter()
            with self.assertRaises(ChapterBusyError):
                session.delete_chapter(first_id)
            client.gate.set()
            return await pending

        result = asyncio.run(scenario())

        self.assertEqual(result.outcome, StepOutcome.APPENDED)
        self.assertEqual(session.project.chapter(first_id).content, "reply number 1 arrived late")

        session.reset_chapter(first_id)
        self.assertEqual(session.project.chapter(first_id).content, "")
        session.delete_chapter(first_id)
        self.assertEqual(len(session.project.chapters), 1)


if __name__ == "__main__":
    unittest.main()
