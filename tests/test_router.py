from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from mate.assistant import FLOW_HINT, Assistant
from mate.memory.conversation import ConversationStore
from mate.memory.longterm import LongTermMemoryStore
from mate.orchestrator.base import ExecutionError, RoutingMode
from mate.orchestrator.router import ModeRegistry, Router, suggest_mode


class SuggestModeTests(unittest.TestCase):
    def test_complex_vocabulary_suggests_flow(self) -> None:
        for text in (
            "investigá el mercado de autos eléctricos",
            "Por favor analizá esto",
            "Research the best laptops",
            "explain it step by step",
            "quiero un informe semanal",
            "write an essay about rivers",
        ):
            self.assertEqual(suggest_mode(text), RoutingMode.FLOW, text)

    def test_everyday_messages_stay_simple(self) -> None:
        for text in ("hola, ¿cómo estás?", "what time is it?", "recreational", "investigar"):
            self.assertEqual(suggest_mode(text), RoutingMode.SIMPLE, text)

    def test_spanish_words_need_whitespace_boundaries(self) -> None:
        self.assertEqual(suggest_mode("creá"), RoutingMode.FLOW)
        self.assertEqual(suggest_mode("recreá"), RoutingMode.SIMPLE)


class ModeRegistryTests(unittest.TestCase):
    def test_default_is_simple_and_per_user(self) -> None:
        modes = ModeRegistry()
        self.assertEqual(modes.get("1"), RoutingMode.SIMPLE)
        modes.set("1", "flow")
        self.assertEqual(modes.get("1"), RoutingMode.FLOW)
        self.assertEqual(modes.get("2"), RoutingMode.SIMPLE)
        modes.reset("1")
        self.assertEqual(modes.get("1"), RoutingMode.SIMPLE)

    def test_unknown_mode_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ModeRegistry().set("1", "turbo")


class RouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.memory = LongTermMemoryStore(self.root)
        self.simple = MagicMock()
        self.simple.execute = AsyncMock(return_value="simple answer")
        self.flow = MagicMock()
        self.flow.execute = AsyncMock(return_value="flow answer")
        self.router = Router(self.simple, self.flow, self.memory)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def test_dispatches_by_mode(self) -> None:
        self.assertEqual(await self.router.route_message("hi", RoutingMode.SIMPLE, "1"), "simple answer")
        self.assertEqual(await self.router.route_message("hi", RoutingMode.FLOW, "1"), "flow answer")
        self.simple.execute.assert_awaited_once_with("hi", "1")
        self.flow.execute.assert_awaited_once_with("hi", "1")

    async def test_prepares_memory_and_migrates_legacy_first(self) -> None:
        legacy = self.root / "7"
        legacy.mkdir()
        (legacy / "memories.json").write_text('{"memory": {"Name": "Eva"}}', encoding="utf-8")
        await self.router.route_message("hi", RoutingMode.SIMPLE, "7")
        self.assertTrue((legacy / "memories.json.migrated").exists())
        self.assertEqual(self.memory.recall("7", "Name").value, "Eva")


class AssistantTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.memory = LongTermMemoryStore(Path(self._tmp.name))
        self.conversations = ConversationStore()
        self.router = MagicMock()
        self.router.route_message = AsyncMock(return_value="**Sure**")
        self.modes = ModeRegistry()
        self.assistant = Assistant(self.router, self.modes, self.conversations, self.memory)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def test_hint_only_in_simple_mode(self) -> None:
        reply = await self.assistant.handle("1", "research electric cars")
        self.assertEqual(reply.hint, FLOW_HINT)
        self.router.route_message.assert_awaited_with("research electric cars", RoutingMode.SIMPLE, "1")

        self.assistant.set_mode("1", RoutingMode.FLOW)
        reply = await self.assistant.handle("1", "research electric cars")
        self.assertIsNone(reply.hint)
        self.router.route_message.assert_awaited_with("research electric cars", RoutingMode.FLOW, "1")

    async def test_extracted_facts_are_remembered_after_reply(self) -> None:
        await self.assistant.handle("1", "me llamo Lucía y vivo en Mendoza")
        self.assertEqual(self.memory.recall("1", "Name").value, "Lucía")
        self.assertEqual(self.memory.recall("1", "Location").value, "Mendoza")

    async def test_nothing_is_remembered_when_execution_fails(self) -> None:
        self.router.route_message = AsyncMock(side_effect=ExecutionError())
        with self.assertRaises(ExecutionError):
            await self.assistant.handle("1", "my name is Zed")
        self.assertIsNone(self.memory.recall("1", "Name"))


if __name__ == "__main__":
    unittest.main()
