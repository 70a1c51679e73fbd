from typing import Annotated

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources.types import NoDecode


_MIN_SESSION_SECRET_KEY_LENGTH = 32
_PLACEHOLDER_SESSION_SECRETS = frozenset({
    "change-me",
    "changeme",
    "change-me-to-random-value",
    "please-change-me",
})


def _split_csv(raw: object, *, lower: bool = False) -> tuple[str, ...] | object:
    """Turn a comma separated string (or sequence) into a trimmed, deduplicated tuple.

    `.env` で管理する一覧値は空白や重複が混ざりやすいため、設定読み込み時に
    正規化しておく。シーケンス以外の値はそのまま pydantic の検証へ渡す。
    """

    if raw is None:
        candidates: list[object] = []
    elif isinstance(raw, str):
        candidates = list(raw.split(","))
    else:
        try:
            candidates = list(raw)  # type: ignore[call-overload]
        except TypeError:
            return raw

    normalised: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        trimmed = candidate.strip()
        if lower:
            trimmed = trimmed.lower()
        if not trimmed or trimmed in seen:
            continue
        seen.add(trimmed)
        normalised.append(trimmed)
    return tuple(normalised)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    環境変数から読み込まれるアプリ設定クラス。
    - environment: 実行環境（development/staging/production など）
    - session_*: 署名付きセッションクッキーの設定
    - openai_* / tts_*: 翻訳・音声合成の外部 API 設定
    - stripe_* / resend_*: 課金とメール送信の外部 API 設定
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )
    app_base_url: str = Field(
        default="http://localhost:5173",
        description="Public URL of the web app used for redirects / Stripe 等のリダイレクト先",
    )

    # --- Authentication / session ---
    google_client_id: str = Field(
        default="",
        description="Google OAuth client ID / Googleサインイン用クライアントID",
    )
    google_clock_skew_seconds: int = Field(
        default=60,
        description="Allowed clock skew when verifying Google ID tokens (seconds)",
    )
    admin_email_allowlist: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description="Emails granted admin tooling / 管理画面を利用できるメールアドレス",
    )
    session_secret_key: str = Field(
        default="",
        description="Secret key for signing session cookies / セッションクッキー署名用シークレット",
    )
    session_cookie_name: str = Field(
        default="ld_session",
        description="Session cookie name / セッションクッキー名",
    )
    session_cookie_secure: bool = Field(
        default=False,
        description="Whether to mark session cookie as Secure",
    )
    session_max_age_seconds: int = Field(
        default=60 * 60 * 24 * 14,
        description="Session lifetime in seconds / セッションの寿命（秒）",
    )
    disable_session_auth: bool = Field(
        default=False,
        description=(
            "Disable session cookie authentication (development/testing only) / "
            "セッションクッキー認証を無効化する（開発・テスト用途のみ）"
        ),
    )
    local_user_id: str = Field(
        default="local-user",
        description="User id resolved when session auth is disabled",
    )
    local_user_email: str = Field(
        default="local@example.com",
        description="Email of the local user when session auth is disabled",
    )

    # --- OpenAI (translation / TTS) ---
    openai_api_key: str | None = Field(default=None, description="OpenAI API Key")
    translation_model: str = Field(
        default="gpt-4o-mini",
        description="Chat model used for sentence translations / 翻訳に使うモデル",
    )
    translation_cache_size: int = Field(
        default=512,
        description="Max cached translations kept in memory / 翻訳キャッシュの上限件数",
    )
    llm_timeout_ms: int = Field(
        default=60000,
        description="Per-attempt timeout for OpenAI calls (ms) / OpenAI呼出しの試行毎タイムアウト(ms)",
    )
    tts_model: str = Field(
        default="gpt-4o-mini-tts",
        description="OpenAI speech model / 音声合成モデル",
    )
    tts_text_max_length: int = Field(
        default=4000,
        description="Max characters accepted by /api/tts / 読み上げテキストの上限文字数",
    )
    tts_chunk_max_chars: int = Field(
        default=300,
        description="Max characters per synthesized chunk / 1回の合成に渡す最大文字数",
    )

    # --- Stripe ---
    stripe_secret_key: str | None = Field(default=None, description="Stripe secret key")
    stripe_webhook_secret: str | None = Field(
        default=None, description="Stripe webhook signing secret"
    )
    stripe_api_version: str = Field(
        default="2023-10-16",
        description="Pinned Stripe API version / Stripe API バージョン",
    )

    # --- Resend (email) ---
    resend_api_key: str | None = Field(default=None, description="Resend API key")
    resend_api_url: str = Field(
        default="https://api.resend.com/emails",
        description="Resend email endpoint",
    )
    email_from: str = Field(
        default="LingoDrill <hello@lingodrill.app>",
        description="Sender for transactional emails / 送信元アドレス",
    )
    email_timeout_seconds: float = Field(default=10.0, description="Resend request timeout")

    # --- Free tier limits ---
    free_exercise_limit: int = Field(
        default=3,
        description="Max dictation exercises for free users / 無料ユーザーの書き取り問題上限",
    )
    free_bidirectional_exercise_limit: int = Field(
        default=3,
        description="Max bidirectional exercises for free users / 無料ユーザーの双方向問題上限",
    )
    free_vocabulary_export_limit: int = Field(
        default=3,
        description="Max vocabulary items a free user can export / 無料ユーザーのエクスポート上限",
    )

    # --- Firestore ---
    firestore_project_id: str | None = Field(
        default=None,
        description="Firestore project id",
        validation_alias=AliasChoices("firestore_project_id", "google_cloud_project"),
    )
    firestore_emulator_host: str | None = Field(
        default=None,
        description="Firestore emulator host (host:port) / Firestore エミュレータのホスト",
    )

    # --- Operations/Observability ---
    rate_limit_per_min_ip: int = Field(
        default=240,
        description="Per-IP API requests per minute / IP単位の毎分上限",
    )
    rate_limit_per_min_user: int = Field(
        default=240,
        description="Per-user API requests per minute / 認証セッション単位の毎分上限",
    )
    security_hsts_max_age_seconds: int = Field(
        default=63072000,
        description="Strict-Transport-Security max-age directive in seconds",
    )
    security_csp_default_src: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("'self'",),
        description="Content-Security-Policy default-src sources (comma separated)",
    )
    allowed_cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description="Comma separated CORS origins / CORS で許可するオリジンのカンマ区切り一覧",
        validation_alias=AliasChoices("allowed_cors_origins", "cors_allowed_origins"),
    )
    sentry_dsn: str | None = Field(
        default=None, description="Sentry DSN (enable if set)"
    )

    # Pydantic v2 settings config
    # - env_file: .env を読み込む
    # - extra: .env に存在する未使用キーを無視
    # - case_sensitive: 環境変数キーの大小文字を区別しない
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("session_secret_key", mode="after")
    @classmethod
    def _validate_session_secret(cls, value: str) -> str:
        """Reject empty, placeholder or short session secrets.

        プレースホルダーや 32 文字未満の署名鍵は読み込み時点でエラーにする。
        """

        secret = (value or "").strip()
        if not secret:
            raise ValueError("SESSION_SECRET_KEY must be a non-empty random string")
        if secret.casefold() in _PLACEHOLDER_SESSION_SECRETS:
            raise ValueError(
                "SESSION_SECRET_KEY must not use placeholder values like 'change-me'",
            )
        if len(secret) < _MIN_SESSION_SECRET_KEY_LENGTH:
            raise ValueError("SESSION_SECRET_KEY must be at least 32 characters long")
        return secret

    @field_validator("admin_email_allowlist", mode="before")
    @classmethod
    def _normalise_admin_allowlist(cls, raw: object) -> tuple[str, ...] | object:
        return _split_csv(raw, lower=True)

    @field_validator("allowed_cors_origins", "security_csp_default_src", mode="before")
    @classmethod
    def _normalise_csv_tuples(cls, raw: object) -> tuple[str, ...] | object:
        return _split_csv(raw)

    @model_validator(mode="after")
    def _apply_environment_sensitive_defaults(self) -> "Settings":
        """Enable secure cookies in production unless explicitly configured."""

        environment_name = (self.environment or "").lower()
        is_secure_explicitly_configured = "session_cookie_secure" in self.model_fields_set
        if environment_name == "production" and not is_secure_explicitly_configured:
            self.session_cookie_secure = True
        return self


settings = Settings()
