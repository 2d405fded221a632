# quizai/services/conversation.py
"""
Conversations with historical characters.

``ConversationManager`` keeps the message list sent to the chat endpoint;
``CharacterChat`` adds the turn bookkeeping the chat screen relies on:
optimistic user message, rollback on transient errors, and a terminal stop
when the session token budget is spent.
"""
import logging
import random
import threading
import uuid
from typing import Callable, Dict, List, Optional

from .errors import ChatFinished, SessionLimitExceeded
from .openai_gateway import ChatReply, OpenAIGateway
from .token_budget import SessionTokenTracker

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 10
DEFAULT_HISTORY = 10
DEFAULT_MAX_SESSIONS = 1000

HISTORICAL_CHARACTERS = {
    "세종대왕": {
        "period": "조선시대",
        "description": "한글을 만드신 조선의 위대한 왕",
        "personality": "백성을 사랑하고 학문을 중시하는",
        "expertise": ["한글 창제", "과학 기술 발전", "백성 사랑", "음악과 예술"],
    },
    "이순신": {
        "period": "조선시대",
        "description": "임진왜란에서 나라를 구한 장군",
        "personality": "나라를 위해 헌신하는",
        "expertise": ["거북선", "전쟁 전략", "충성심", "리더십"],
    },
    "신사임당": {
        "period": "조선시대",
        "description": "예술과 학문에 뛰어난 여성",
        "personality": "자녀 교육에 힘쓰는",
        "expertise": ["그림", "글씨", "자녀 교육", "효도"],
    },
    "유관순": {
        "period": "근현대",
        "description": "독립운동에 앞장선 소녀",
        "personality": "용감하고 나라를 사랑하는",
        "expertise": ["3.1 운동", "독립 정신", "용기", "희생"],
    },
    "김구": {
        "period": "근현대",
        "description": "대한민국 임시정부를 이끈 독립운동가",
        "personality": "평화를 사랑하는",
        "expertise": ["독립운동", "평화", "교육", "민주주의"],
    },
    "장영실": {
        "period": "조선시대",
        "description": "뛰어난 과학자이자 발명가",
        "personality": "창의적이고 끈기있는",
        "expertise": ["측우기", "해시계", "물시계", "과학 기술"],
    },
}


def build_character_prompt(name: str, period: str) -> str:
    return f"""당신은 한국의 역사 인물 "{name}"입니다.
초등학생(8-13세)과 대화하고 있으며, 다음 지침을 반드시 따라주세요:

대화 원칙:
1. 초등학생 수준의 쉬운 어휘와 짧은 문장 사용
2. 존댓말 사용하되 친근하고 따뜻한 톤 유지
3. 한 번에 2-3문장 이내로 간결하게 답변
4. 이모지를 적절히 사용하여 친근감 표현
5. 역사적 사실을 쉽고 재미있게 설명

교육적 가치:
- 역사적 사실을 정확하게 전달
- 교훈과 가치관을 자연스럽게 녹여내기
- 궁금증을 유발하는 질문으로 대화 이끌기
- 긍정적이고 도덕적인 내용만 포함

금지 사항:
- 폭력적, 선정적, 정치적으로 민감한 내용
- 어려운 한자어나 전문 용어
- 긴 설명이나 복잡한 문장
- 부정적이거나 무서운 내용

당신의 역할: {name} ({period})
당신의 성격: 친절하고 지혜로우며, 어린이들을 사랑하는 교육자
대화 스타일: 할머니/할아버지가 손주에게 이야기하듯 따뜻하고 재미있게"""


def welcome_message(name: str, rng: Optional[random.Random] = None) -> str:
    character = HISTORICAL_CHARACTERS.get(name)
    if not character:
        return "안녕하세요! 저는 역사 속 인물입니다. 무엇이든 물어보세요! 😊"

    options = [
        f"안녕하세요! 저는 {character['period']}의 {name}입니다. 😊\n{character['description']}이에요. 궁금한 것이 있나요?",
        f"반가워요! 나는 {name}이라고 해요. ✨\n{character['expertise'][0]}에 대해 이야기해볼까요?",
        f"어서오세요! {name}입니다. 🌟\n여러분과 우리 역사에 대해 이야기하게 되어 기쁘네요!",
    ]
    return (rng or random).choice(options)


class ConversationManager:
    def __init__(self, character_name: str):
        self.character_name = character_name
        self.messages: List[Dict[str, str]] = []
        self.turn_count = 0

        character = HISTORICAL_CHARACTERS.get(character_name)
        if character:
            self.messages.append({
                "role": "system",
                "content": build_character_prompt(character_name, character["period"]),
            })

    @property
    def has_system_prompt(self) -> bool:
        return bool(self.messages) and self.messages[0]["role"] == "system"

    def add_user_message(self, content: str) -> None:
        self.messages.append({"role": "user", "content": content})
        self.turn_count += 1

    def add_assistant_message(self, content: str) -> None:
        self.messages.append({"role": "assistant", "content": content})

    def pop_last_user_message(self) -> Optional[str]:
        if self.messages and self.messages[-1]["role"] == "user":
            self.turn_count = max(0, self.turn_count - 1)
            return self.messages.pop()["content"]
        return None

    def trim_history(self, max_messages: int = DEFAULT_HISTORY) -> None:
        """Keep the system prompt plus the most recent ``max_messages`` messages."""
        if not self.has_system_prompt:
            self.messages = self.messages[-max_messages:]
            return
        if len(self.messages) > max_messages + 1:
            self.messages = [self.messages[0]] + self.messages[-max_messages:]

    def stats(self) -> dict:
        body = self.messages[1:] if self.has_system_prompt else self.messages
        return {
            "total_messages": len(body),
            "user_messages": sum(1 for m in body if m["role"] == "user"),
            "assistant_messages": sum(1 for m in body if m["role"] == "assistant"),
            "turn_count": self.turn_count,
        }


class CharacterChat:
    def __init__(self, character_name: str, gateway: OpenAIGateway, tracker: SessionTokenTracker,
                 max_turns: int = DEFAULT_MAX_TURNS, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex
        self.conversation = ConversationManager(character_name)
        self.gateway = gateway
        self.tracker = tracker
        self.max_turns = max_turns
        self._lock = threading.Lock()

    @property
    def character_name(self) -> str:
        return self.conversation.character_name

    @property
    def turn_count(self) -> int:
        return self.conversation.turn_count

    @property
    def is_finished(self) -> bool:
        return self.turn_count >= self.max_turns

    def send(self, text: str, credential: Optional[str]) -> ChatReply:
        text = (text or "").strip()
        if not text:
            raise ValueError("message required")

        # 같은 세션에 동시에 들어온 요청은 한 턴씩 처리한다
        with self._lock:
            if self.is_finished:
                raise ChatFinished()

            self.conversation.add_user_message(text)
            self.conversation.trim_history()
            try:
                reply = self.gateway.chat(self.conversation.messages, credential, self.tracker)
            except SessionLimitExceeded:
                # 세션 예산 소진: 이번 대화는 여기서 끝
                self.conversation.pop_last_user_message()
                self.conversation.turn_count = self.max_turns
                logger.warning("[CharacterChat] %s 세션 토큰 한도 도달, 대화 종료", self.session_id)
                raise
            except Exception:
                # 그 밖의 오류: 사용자가 다시 보낼 수 있도록 되돌린다
                self.conversation.pop_last_user_message()
                raise

            self.conversation.add_assistant_message(reply.content)
            return reply

    def state(self) -> dict:
        return {
            "session_id": self.session_id,
            "character": self.character_name,
            "turn_count": self.turn_count,
            "max_turns": self.max_turns,
            "finished": self.is_finished,
            "usage": self.tracker.get_usage().as_dict(),
        }


class ChatRegistry:
    """
    In-memory chat sessions of this process, capped at ``max_sessions``.

    When full, the oldest session is dropped and ``on_evict(session_id)`` is
    called so its token tracker can go with it.
    """

    def __init__(self, max_sessions: int = DEFAULT_MAX_SESSIONS,
                 on_evict: Optional[Callable[[str], None]] = None):
        if max_sessions <= 0:
            raise ValueError("max_sessions must be > 0")
        self.max_sessions = max_sessions
        self.on_evict = on_evict
        self._chats: Dict[str, CharacterChat] = {}
        self._lock = threading.Lock()

    def add(self, chat: CharacterChat) -> CharacterChat:
        evicted = []
        with self._lock:
            self._chats[chat.session_id] = chat
            while len(self._chats) > self.max_sessions:
                # dict는 삽입 순서를 유지하므로 첫 항목이 가장 오래된 세션
                oldest = next(iter(self._chats))
                del self._chats[oldest]
                evicted.append(oldest)
        for session_id in evicted:
            logger.info("[CharacterChat] 세션 수 한도 초과, 오래된 세션 제거: %s", session_id)
            if self.on_evict:
                self.on_evict(session_id)
        return chat

    def get(self, session_id: str) -> Optional[CharacterChat]:
        return self._chats.get(session_id)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._chats

    def __len__(self) -> int:
        return len(self._chats)
