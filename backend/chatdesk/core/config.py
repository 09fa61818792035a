"""Configuración central basada en variables de entorno."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WELCOME_MESSAGE = "Hello! How can I help you today?"
HANDOFF_OFFER_TEXT = (
    "Të them të drejtën, kërkova por nuk po gjej një përgjigje të saktë për këtë. "
    "Dëshiron të të lidh këtu në chat me një koleg tjetër që ka më shumë informacion për këtë?"
)
HANDOFF_CONNECTING_TEXT = "Në rregull! Po të lidh me një koleg. Të lutem prit pak, do të të përgjigjet së shpejti."
CONVERSATION_ENDED_TEXT = "Biseda përfundoi."
ASSISTANT_RESUMED_TEXT = "Kolegu u largua nga biseda. Asistenti virtual vazhdon të të ndihmojë."


class Settings(BaseSettings):
    """Valores globales leídos desde `.env` o el entorno."""

    environment: str = "development"
    log_level: str | None = Field(
        default=None,
        description="Nivel de logging global (ej. debug, info, warning). Cuando no se define, usa un valor por ambiente.",
    )
    request_log_level: str = Field(
        default="info",
        description=(
            "Nivel mínimo para registrar solicitudes en middleware. "
            "Valores más altos (warning/error) reducen registros de peticiones exitosas."
        ),
    )
    request_log_skip_prefixes: tuple[str, ...] = Field(
        default=("/favicon", "/robots.txt", "/docs", "/openapi", "/api/health"),
        description="Prefijos de ruta para los que no se registrarán eventos de request.started/completed.",
    )
    log_file_path: str | None = Field(
        default=None,
        description="Archivo principal de logs; sin valor sólo se escribe a stderr.",
    )

    openai_api_key: str | None = None
    openai_assistant_id: str | None = Field(
        default=None,
        description="ID de prompt (`pmpt_...`) a usar con Responses; sin valor se usan instrucciones locales.",
    )
    openai_prompt_version: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_classifier_model: str = "gpt-4o-mini"
    assistant_timeout_seconds: float = Field(default=30.0, gt=0)
    classifier_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Tiempo máximo para clasificar la respuesta del visitante antes de asumir OTHER.",
    )
    title_history_turns: int = Field(default=6, ge=1)

    supabase_url: str | None = None
    supabase_service_role: str | None = None
    # Acepta varias variantes comunes del anon key para robustez
    supabase_anon: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CHATDESK_SUPABASE_ANON", "SUPABASE_ANON_KEY", "SUPABASE_ANON"),
    )
    supabase_jwt_secret: str | None = None
    visitor_token_ttl_seconds: int = Field(default=3600, gt=0)

    cron_secret: str | None = Field(
        default=None,
        description="Secreto compartido para /cron/sweep; sin valor el endpoint queda abierto.",
    )
    inactive_after_minutes: int = Field(default=5, gt=0)
    ended_after_minutes: int = Field(default=180, gt=0)
    sweep_chunk_size: int = Field(default=100, gt=0, le=500)
    sweep_interval_seconds: int = Field(default=60, gt=0)
    sweep_scheduler_enabled: bool = Field(
        default=False,
        description="Arranca el barrido periódico dentro del proceso de la API.",
    )
    typing_ttl_seconds: float = Field(default=5.0, gt=0)

    default_welcome_message: str = DEFAULT_WELCOME_MESSAGE
    handoff_offer_text: str = HANDOFF_OFFER_TEXT
    handoff_connecting_text: str = HANDOFF_CONNECTING_TEXT
    conversation_ended_text: str = CONVERSATION_ENDED_TEXT
    assistant_resumed_text: str = ASSISTANT_RESUMED_TEXT

    model_config = SettingsConfigDict(env_file=".env", env_prefix="CHATDESK_", extra="allow")


settings = Settings()
