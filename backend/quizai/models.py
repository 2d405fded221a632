from django.db import models


class StoredValue(models.Model):
    """
    네임스페이스(브라우저 프로필 또는 사용자) 단위로 저장되는 JSON 문자열.
    프론트엔드가 localStorage에 두던 값들(이미지 캐시, 일일 생성 한도,
    인물 이미지 맵, 사용자 API 키)을 서버 쪽에서 보관한다.
    """
    namespace = models.CharField(max_length=255, db_index=True, help_text="user:<id> / anon:<ip> / client:<id>")
    key = models.CharField(max_length=200)
    value = models.TextField(help_text="JSON 문자열")
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "kv_stored_value"
        unique_together = (("namespace", "key"),)
        indexes = [
            models.Index(fields=["namespace", "updated_at"], name="kv_ns_updated_idx"),
        ]

    def __str__(self):
        return f"{self.namespace}:{self.key} ({len(self.value or '')} chars)"
