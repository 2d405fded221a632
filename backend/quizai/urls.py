from django.urls import path
from . import views

urlpatterns = [
    path('health/', views.health_check, name='health_check'),

    # 이미지 캐시
    path('images/', views.clear_images, name='clear_images'),
    path('images/generate/', views.generate_image, name='generate_image'),
    path('images/quiz/', views.quiz_image, name='quiz_image'),
    path('images/stats/', views.image_stats, name='image_stats'),
    path('images/<str:key>/', views.cached_image, name='cached_image'),

    # AI 굿즈
    path('quota/', views.quota_status, name='quota_status'),
    path('goods/generate/', views.goods_generate, name='goods_generate'),

    # 인물
    path('characters/<str:character_id>/image/', views.character_image, name='character_image'),
    path('chat/sessions/', views.chat_sessions, name='chat_sessions'),
    path('chat/sessions/<str:session_id>/messages/', views.chat_messages, name='chat_messages'),
    path('chat/sessions/<str:session_id>/usage/', views.chat_usage, name='chat_usage'),

    # 설정
    path('settings/api-key/', views.api_key_settings, name='api_key_settings'),
]
