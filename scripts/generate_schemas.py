# scripts/generate_schemas.py
import json
from pathlib import Path
from typing import Any, Dict, List

# Импортируем все модели, для которых нужны схемы
from apps.auth_svc.rest.dto import APIResponse
from libs.domain.dto.auth import LoginResult, RefreshResult, RegisterResult, UserPublic
from libs.domain.dto.mfa import BackupCodesResult, MfaSetupResult, MfaStatus
from libs.domain.dto.oauth import LinkedAccount
from libs.domain.dto.session import SessionInfo

# Определяем, где лежат модели и куда сохранять схемы
SCHEMAS_DIR = Path(__file__).parent.parent / "libs/domain/schemas/v1"
MODELS_TO_GENERATE = {
    "auth_register_response.v1.json": APIResponse[RegisterResult],
    "auth_login_response.v1.json": APIResponse[LoginResult],
    "auth_refresh_response.v1.json": APIResponse[RefreshResult],
    "auth_me_response.v1.json": APIResponse[UserPublic],
    "mfa_setup_response.v1.json": APIResponse[MfaSetupResult],
    "mfa_status_response.v1.json": APIResponse[MfaStatus],
    "mfa_backup_codes_response.v1.json": APIResponse[BackupCodesResult],
    "oauth_linked_response.v1.json": APIResponse[List[LinkedAccount]],
    "session_list_response.v1.json": APIResponse[List[SessionInfo]],
}


def response_schema(model: Any) -> Dict[str, Any]:
    """Схема в том виде, в каком модель уходит в ответ: camelCase, режим сериализации."""
    return model.model_json_schema(by_alias=True, mode="serialization")


def generate_schemas():
    """
    Генерирует и сохраняет JSON-схемы для Pydantic-моделей.
    """
    print(f"📁 Сохраняем схемы в: {SCHEMAS_DIR}")
    SCHEMAS_DIR.mkdir(parents=True, exist_ok=True)

    for filename, model in MODELS_TO_GENERATE.items():
        schema_path = SCHEMAS_DIR / filename
        print(f"  -> Генерируем {filename}...")
        with open(schema_path, "w", encoding="utf-8") as f:
            json.dump(response_schema(model), f, ensure_ascii=False, indent=2)
            f.write("\n")

    print("✅ Все схемы успешно сгенерированы!")


if __name__ == "__main__":
    generate_schemas()
