import random
import threading
from types import SimpleNamespace

import openai
from django.test import SimpleTestCase

from quizai.services.character_images import (
    CharacterImageMap,
    character_image_candidates,
    character_image_path,
)
from quizai.services.conversation import (
    CharacterChat,
    ChatRegistry,
    ConversationManager,
    HISTORICAL_CHARACTERS,
    welcome_message,
)
from quizai.services.errors import (
    ChatFinished,
    MissingCredential,
    ProviderFailure,
    ProviderRateLimited,
    SessionLimitExceeded,
)
from quizai.services.openai_gateway import OpenAIGateway
from quizai.services.token_budget import SessionTokenTracker
from quizai.storage import MemoryKeyValueStore

from .fakes import FakeOpenAI, status_error

API_KEY = "sk-test-1234567890"


class ConversationManagerTests(SimpleTestCase):

    def test_known_character_gets_system_prompt(self):
        manager = ConversationManager("세종대왕")
        self.assertTrue(manager.has_system_prompt)
        self.assertIn("세종대왕", manager.messages[0]["content"])
        self.assertIn("조선시대", manager.messages[0]["content"])

    def test_unknown_character_has_no_system_prompt(self):
        self.assertEqual(ConversationManager("홍길동").messages, [])

    def test_turns_count_user_messages_only(self):
        manager = ConversationManager("이순신")
        manager.add_user_message("거북선은 어떻게 생겼나요?")
        manager.add_assistant_message("등에 뾰족한 쇠못이 있단다!")
        self.assertEqual(manager.stats(), {
            "total_messages": 2,
            "user_messages": 1,
            "assistant_messages": 1,
            "turn_count": 1,
        })

    def test_trim_history_keeps_system_prompt(self):
        manager = ConversationManager("장영실")
        for i in range(8):
            manager.add_user_message(f"질문 {i}")
            manager.add_assistant_message(f"답변 {i}")

        manager.trim_history(10)

        self.assertEqual(len(manager.messages), 11)
        self.assertEqual(manager.messages[0]["role"], "system")
        self.assertEqual(manager.messages[-1]["content"], "답변 7")
        self.assertEqual(manager.turn_count, 8)

    def test_welcome_message(self):
        text = welcome_message("유관순", rng=random.Random(0))
        self.assertIn("유관순", text)
        self.assertIn("역사 속 인물", welcome_message("홍길동"))


class CharacterChatTests(SimpleTestCase):

    def make_chat(self, fake=None, ceiling=100_000, max_turns=10):
        self.fake = fake or FakeOpenAI()
        self.tracker = SessionTokenTracker(ceiling=ceiling)
        return CharacterChat(
            "세종대왕",
            OpenAIGateway(client_factory=self.fake.factory),
            self.tracker,
            max_turns=max_turns,
        )

    def test_successful_turn_appends_reply(self):
        chat = self.make_chat(FakeOpenAI(reply="백성을 위해 만들었단다."))
        reply = chat.send("한글은 왜 만들었어요?", API_KEY)

        self.assertEqual(reply.content, "백성을 위해 만들었단다.")
        self.assertEqual(chat.turn_count, 1)
        self.assertEqual(chat.conversation.messages[-1], {"role": "assistant", "content": "백성을 위해 만들었단다."})
        self.assertEqual(chat.state()["usage"]["total_tokens"], 160)

    def test_transient_error_rolls_back_turn(self):
        chat = self.make_chat(FakeOpenAI(error=status_error(openai.RateLimitError, 429)))
        before = list(chat.conversation.messages)

        with self.assertRaises(ProviderRateLimited):
            chat.send("안녕하세요", API_KEY)

        self.assertEqual(chat.turn_count, 0)
        self.assertEqual(chat.conversation.messages, before)
        self.assertFalse(chat.is_finished)

    def test_missing_credential_rolls_back_turn(self):
        chat = self.make_chat()
        with self.assertRaises(MissingCredential):
            chat.send("안녕하세요", None)
        self.assertEqual(chat.turn_count, 0)

    def test_session_limit_ends_conversation(self):
        chat = self.make_chat(FakeOpenAI(usage=(0, 0, 100_001)))
        chat.send("첫 질문", API_KEY)
        messages_after_first_turn = list(chat.conversation.messages)

        with self.assertRaises(SessionLimitExceeded):
            chat.send("두 번째 질문", API_KEY)

        self.assertTrue(chat.is_finished)
        self.assertEqual(chat.turn_count, 10)
        self.assertEqual(chat.conversation.messages, messages_after_first_turn)
        self.assertEqual(len(self.fake.chat_calls), 1)

        with self.assertRaises(ChatFinished):
            chat.send("세 번째 질문", API_KEY)

    def test_max_turns(self):
        chat = self.make_chat(max_turns=2)
        chat.send("하나", API_KEY)
        chat.send("둘", API_KEY)
        self.assertTrue(chat.is_finished)
        with self.assertRaises(ChatFinished):
            chat.send("셋", API_KEY)
        self.assertEqual(len(self.fake.chat_calls), 2)

    def test_blank_message_is_rejected(self):
        chat = self.make_chat()
        with self.assertRaises(ValueError):
            chat.send("   ", API_KEY)
        self.assertEqual(chat.turn_count, 0)

    def test_reply_without_message_rolls_back_turn(self):
        chat = self.make_chat(FakeOpenAI(choices=[SimpleNamespace(message=None)]))
        before = list(chat.conversation.messages)

        with self.assertRaises(ProviderFailure) as ctx:
            chat.send("안녕하세요", API_KEY)

        self.assertIn("malformed_response", ctx.exception.detail)
        self.assertEqual(chat.turn_count, 0)
        self.assertEqual(chat.conversation.messages, before)

    def test_unexpected_error_rolls_back_turn(self):
        def broken_factory(api_key=None, **kwargs):
            raise RuntimeError("client init failed")

        self.tracker = SessionTokenTracker(ceiling=100_000)
        chat = CharacterChat("세종대왕", OpenAIGateway(client_factory=broken_factory), self.tracker)
        before = list(chat.conversation.messages)

        with self.assertRaises(RuntimeError):
            chat.send("안녕하세요", API_KEY)

        self.assertEqual(chat.turn_count, 0)
        self.assertEqual(chat.conversation.messages, before)
        # 되돌린 뒤에는 정상적으로 다시 보낼 수 있다
        chat.gateway = OpenAIGateway(client_factory=FakeOpenAI().factory)
        chat.send("안녕하세요", API_KEY)
        self.assertEqual(chat.turn_count, 1)

    def test_concurrent_sends_are_serialized(self):
        chat = self.make_chat(max_turns=1)
        entered = threading.Event()
        release = threading.Event()
        real_chat = chat.gateway.chat

        def slow_chat(*args, **kwargs):
            entered.set()
            release.wait(5)
            return real_chat(*args, **kwargs)

        chat.gateway.chat = slow_chat
        errors = []

        def second_send():
            try:
                chat.send("둘", API_KEY)
            except ChatFinished as e:
                errors.append(e)

        first = threading.Thread(target=chat.send, args=("하나", API_KEY))
        first.start()
        self.assertTrue(entered.wait(5))
        self.assertTrue(chat._lock.locked())
        second = threading.Thread(target=second_send)
        second.start()
        release.set()
        first.join(5)
        second.join(5)

        # 두 번째 요청은 첫 턴이 끝난 뒤에 보고 한도 초과로 거절된다
        self.assertEqual(len(errors), 1)
        self.assertEqual(len(self.fake.chat_calls), 1)
        self.assertEqual(chat.turn_count, 1)


class CharacterImageTests(SimpleTestCase):

    def test_static_paths_by_era(self):
        self.assertEqual(character_image_path("sejong", "조선"), "/characters/joseon/sejong.png")
        self.assertEqual(character_image_path("sejong", "조선시대"), "/characters/joseon/sejong.png")
        self.assertEqual(character_image_path("x", "미래"), "")
        self.assertIn("/characters/modern/kimgu.webp", character_image_candidates("kimgu", "근현대"))
        self.assertEqual(character_image_candidates("x", ""), [])

    def test_generates_once_then_uses_cache(self):
        fake = FakeOpenAI(image_url="https://img/sejong.png")
        images = CharacterImageMap(MemoryKeyValueStore(), OpenAIGateway(client_factory=fake.factory))

        first = images.get_or_generate("sejong", "세종대왕", "조선", "a wise king", API_KEY)
        second = images.get_or_generate("sejong", "세종대왕", "조선", "a wise king", API_KEY)

        self.assertEqual(first, {"url": "https://img/sejong.png", "source": "generated"})
        self.assertEqual(second, {"url": "https://img/sejong.png", "source": "cache"})
        self.assertEqual(len(fake.image_calls), 1)
        self.assertEqual(fake.image_calls[0]["style"], "natural")
        self.assertIn("hanbok", fake.image_calls[0]["prompt"])
        self.assertEqual(images.all(), {"sejong": "https://img/sejong.png"})

    def test_errors_propagate(self):
        images = CharacterImageMap(MemoryKeyValueStore(), OpenAIGateway(client_factory=FakeOpenAI().factory))
        with self.assertRaises(MissingCredential):
            images.get_or_generate("sejong", "세종대왕", "조선", "king", None)
        self.assertIsNone(images.get("sejong"))

    def test_full_store_still_returns_generated_portrait(self):
        fake = FakeOpenAI(image_url="https://img/sejong.png")
        images = CharacterImageMap(MemoryKeyValueStore(capacity_bytes=20), OpenAIGateway(client_factory=fake.factory))

        with self.assertLogs("quizai.services.character_images", level="WARNING"):
            result = images.get_or_generate("sejong", "세종대왕", "조선", "king", API_KEY)

        self.assertEqual(result, {"url": "https://img/sejong.png", "source": "generated"})
        self.assertEqual(len(fake.image_calls), 1)
        self.assertIsNone(images.get("sejong"))

    def test_character_table(self):
        for name, info in HISTORICAL_CHARACTERS.items():
            with self.subTest(name=name):
                self.assertTrue(info["period"])
                self.assertTrue(info["expertise"])


class ChatRegistryTests(SimpleTestCase):

    def make_chat(self):
        return CharacterChat("이순신", OpenAIGateway(client_factory=FakeOpenAI().factory), SessionTokenTracker())

    def test_oldest_sessions_are_evicted(self):
        evicted = []
        registry = ChatRegistry(max_sessions=2, on_evict=evicted.append)
        chats = [registry.add(self.make_chat()) for _ in range(3)]

        self.assertEqual(len(registry), 2)
        self.assertNotIn(chats[0].session_id, registry)
        self.assertIsNone(registry.get(chats[0].session_id))
        self.assertIs(registry.get(chats[2].session_id), chats[2])
        self.assertEqual(evicted, [chats[0].session_id])

    def test_max_sessions_must_be_positive(self):
        with self.assertRaises(ValueError):
            ChatRegistry(max_sessions=0)
