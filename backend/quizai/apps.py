from django.apps import AppConfig


class QuizAIConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "quizai"
    verbose_name = "History quiz AI"

    def ready(self):
        # 프로세스당 한 번만 조립해서 뷰에 넘긴다
        from .services.container import build_services
        self.services = build_services()
