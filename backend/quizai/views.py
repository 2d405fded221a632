# quizai/views.py
import os
import logging

from django.apps import apps
from django.http import JsonResponse
from django.utils import timezone
from rest_framework.decorators import api_view
from sentry_sdk import capture_exception

from quizai.utils.openai_keys import delete_api_key, has_env_key, resolve_api_key, save_api_key
from .services.character_images import character_image_candidates, character_image_path
from .services.conversation import HISTORICAL_CHARACTERS, welcome_message
from .services.errors import AIServiceError, ClientRateLimited, DailyQuotaExceeded
from .services.fallback_images import build_quiz_image_prompt
from .services.image_cache import quiz_cache_key

logger = logging.getLogger(__name__)

MAX_CLIENT_ID_LEN = 64


def _services():
    return apps.get_app_config("quizai").services


def _profile_namespace(request) -> str:
    """
    Storage namespace of the caller's browser profile.

    ``X-Client-Id`` (sent by the frontend, one per browser profile) wins;
    otherwise ``user:<id>`` for logged-in users and ``anon:<ip>``.
    """
    client_id = (request.headers.get("X-Client-Id") or "").strip()
    if client_id:
        return f"client:{client_id[:MAX_CLIENT_ID_LEN]}"

    user = getattr(request, "user", None)
    if user and user.is_authenticated:
        return f"user:{user.id}"

    return f"anon:{_client_ip(request)}"


def _client_ip(request) -> str:
    forwarded = (request.META.get("HTTP_X_FORWARDED_FOR", "") or "").split(",")[0].strip()
    return forwarded or request.META.get("REMOTE_ADDR", "unknown") or "unknown"


def _rate_limited(request):
    """429 response when this address is over the per-minute generation limit, else ``None``."""
    limiter = _services().rate_limiter
    ip_addr = _client_ip(request)
    if limiter.check(ip_addr):
        return None
    retry_after = limiter.retry_after_seconds(ip_addr)
    response = _error_response(ClientRateLimited(), retry_after=retry_after)
    response["Retry-After"] = str(retry_after)
    return response


def _error_response(exc: AIServiceError, **extra):
    return JsonResponse({**exc.as_dict(), **extra}, status=exc.http_status)


def _unexpected(tag: str, exc: Exception):
    logger.error("[%s] 예상치 못한 오류: %s", tag, exc, exc_info=True)
    capture_exception(exc)
    return JsonResponse({"error": "internal_error", "message": "서버에서 문제가 생겼어요."}, status=500)


@api_view(['GET'])
def health_check(request):
    return JsonResponse({
        'status': 'ok',
        'message': '백엔드가 정상 동작 중입니다',
        'timestamp': timezone.now().isoformat(),
        'sentry_enabled': bool(os.getenv("SENTRY_DSN")),
        'openai_env_key': has_env_key(),
    })


# =========================================================
# 이미지 캐시
# =========================================================

@api_view(['POST'])
def generate_image(request):
    limited = _rate_limited(request)
    if limited is not None:
        return limited

    data = request.data
    key = (data.get('key') or '').strip()
    prompt = (data.get('prompt') or '').strip()
    if not key or not prompt:
        return JsonResponse({'error': 'key and prompt required'}, status=400)

    namespace = _profile_namespace(request)
    services = _services()
    try:
        store = services.store_for(namespace)
        result = services.image_cache_for(namespace).resolve(key, prompt, resolve_api_key(store))
    except Exception as e:
        return _unexpected("ImageGenerate", e)

    logger.info("[ImageGenerate] %s key=%s source=%s", namespace, key, result.source)
    return JsonResponse({'key': key, **result.as_dict()})


@api_view(['POST'])
def quiz_image(request):
    limited = _rate_limited(request)
    if limited is not None:
        return limited

    data = request.data
    quiz_id = data.get('quiz_id')
    question = (data.get('question') or '').strip()
    category = (data.get('category') or '').strip()
    if quiz_id in (None, '') or not question:
        return JsonResponse({'error': 'quiz_id and question required'}, status=400)

    key = quiz_cache_key(quiz_id)
    prompt = build_quiz_image_prompt(question, category)
    namespace = _profile_namespace(request)
    services = _services()
    try:
        store = services.store_for(namespace)
        result = services.image_cache_for(namespace).resolve(key, prompt, resolve_api_key(store))
    except Exception as e:
        return _unexpected("QuizImage", e)

    return JsonResponse({'key': key, 'prompt': prompt, **result.as_dict()})


@api_view(['GET'])
def cached_image(request, key: str):
    entry = _services().image_cache_for(_profile_namespace(request)).lookup(key)
    if entry is None:
        return JsonResponse({'error': 'not_found'}, status=404)
    return JsonResponse(entry.as_dict())


@api_view(['GET'])
def image_stats(request):
    stats = _services().image_cache_for(_profile_namespace(request)).stats()
    return JsonResponse({
        'total': stats['total'],
        'oldest': stats['oldest'].isoformat() if stats['oldest'] else None,
        'newest': stats['newest'].isoformat() if stats['newest'] else None,
    })


@api_view(['DELETE'])
def clear_images(request):
    _services().image_cache_for(_profile_namespace(request)).clear()
    return JsonResponse({'cleared': True})


# =========================================================
# AI 굿즈 (하루 생성 한도)
# =========================================================

@api_view(['GET'])
def quota_status(request):
    status = _services().quota_for(_profile_namespace(request)).get_status()
    return JsonResponse(status.as_dict())


@api_view(['POST'])
def goods_generate(request):
    limited = _rate_limited(request)
    if limited is not None:
        return limited

    prompt = (request.data.get('prompt') or '').strip()
    if not prompt:
        return JsonResponse({'error': 'prompt required'}, status=400)

    namespace = _profile_namespace(request)
    services = _services()
    quota = services.quota_for(namespace)
    status = quota.get_status()
    if status.remaining <= 0:
        logger.info("[Goods] %s 하루 한도 도달 (%s/%s)", namespace, status.count, status.limit)
        return _error_response(DailyQuotaExceeded(), quota=status.as_dict())

    try:
        credential = resolve_api_key(services.store_for(namespace))
        image = services.gateway.generate_image(prompt, credential)
    except AIServiceError as e:
        # 실패한 생성은 한도에서 차감하지 않는다
        return _error_response(e, quota=status.as_dict())
    except Exception as e:
        return _unexpected("Goods", e)

    quota.increment()
    return JsonResponse({
        'url': image.url,
        'revised_prompt': image.revised_prompt,
        'quota': quota.get_status().as_dict(),
    })


# =========================================================
# 인물 초상화
# =========================================================

@api_view(['POST'])
def character_image(request, character_id: str):
    limited = _rate_limited(request)
    if limited is not None:
        return limited

    data = request.data
    name = (data.get('name') or '').strip()
    period = (data.get('period') or '').strip()
    role = (data.get('role') or '').strip()
    if not name or not period:
        return JsonResponse({'error': 'name and period required'}, status=400)

    namespace = _profile_namespace(request)
    services = _services()
    try:
        credential = resolve_api_key(services.store_for(namespace))
        result = services.character_images_for(namespace).get_or_generate(
            character_id, name, period, role, credential,
        )
    except AIServiceError as e:
        logger.info("[CharacterImage] 생성 실패 (%s), 정적 이미지 사용: %s", e.code, character_id)
        return JsonResponse({
            'url': character_image_path(character_id, period) or None,
            'source': 'static',
            'candidates': character_image_candidates(character_id, period),
            'error': e.code,
            'message': e.message,
        })
    except Exception as e:
        return _unexpected("CharacterImage", e)

    return JsonResponse(result)


# =========================================================
# 인물과 대화
# =========================================================

@api_view(['POST'])
def chat_sessions(request):
    character = (request.data.get('character') or '').strip()
    if not character:
        return JsonResponse({'error': 'character required'}, status=400)
    if character not in HISTORICAL_CHARACTERS:
        return JsonResponse({
            'error': 'unknown character',
            'characters': list(HISTORICAL_CHARACTERS),
        }, status=400)

    chat = _services().start_chat(character)
    logger.info("[Chat] 대화 시작: %s (%s)", character, chat.session_id)
    return JsonResponse({
        'session_id': chat.session_id,
        'welcome': welcome_message(character),
        **chat.state(),
    }, status=201)


@api_view(['POST'])
def chat_messages(request, session_id: str):
    services = _services()
    chat = services.chats.get(session_id)
    if chat is None:
        return JsonResponse({'error': 'session not found'}, status=404)

    text = (request.data.get('message') or '').strip()
    if not text:
        return JsonResponse({'error': 'message required'}, status=400)

    try:
        credential = resolve_api_key(services.store_for(_profile_namespace(request)))
        reply = chat.send(text, credential)
    except AIServiceError as e:
        # SessionLimitExceeded 후에는 state.finished 가 true
        return _error_response(e, state=chat.state())
    except Exception as e:
        return _unexpected("Chat", e)

    return JsonResponse({'reply': reply.content, 'state': chat.state()})


@api_view(['GET'])
def chat_usage(request, session_id: str):
    services = _services()
    if session_id not in services.trackers:
        return JsonResponse({'error': 'session not found'}, status=404)
    return JsonResponse(services.trackers.get(session_id).get_usage().as_dict())


# =========================================================
# 사용자 API 키
# =========================================================

@api_view(['POST', 'DELETE'])
def api_key_settings(request):
    store = _services().store_for(_profile_namespace(request))
    if request.method == 'DELETE':
        delete_api_key(store)
        return JsonResponse({'deleted': True})

    try:
        masked = save_api_key(store, request.data.get('api_key') or '')
    except ValueError:
        return JsonResponse({'error': 'invalid api_key'}, status=400)
    return JsonResponse({'saved': True, 'masked': masked})
